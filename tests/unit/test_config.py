"""
Unit tests for configuration (davbackup/config.py).
"""

import dataclasses

import pytest

from davbackup.config import (
    BackupOptions,
    Config,
    DevelopmentConfig,
    ProductionConfig,
    build_options,
    get_config,
    normalize_dav_dir,
    resolve_base_url
)


class TestConfigClasses:
    """Test configuration selection."""

    def test_defaults(self):
        assert Config.DAV_BASE_URLS['box'] == 'https://dav.box.com/dav'
        assert Config.DAV_BASE_URLS['yandex'] == 'https://webdav.yandex.com'
        assert Config.DEFAULT_DAV_DIR == '/backup'

    def test_get_config_by_name(self):
        assert get_config('development') is DevelopmentConfig
        assert get_config('production') is ProductionConfig
        assert DevelopmentConfig.DEBUG is True

    def test_get_config_from_environment(self, monkeypatch):
        monkeypatch.setenv('DAVBACKUP_ENV', 'development')

        assert get_config() is DevelopmentConfig

    def test_get_config_default(self, monkeypatch):
        monkeypatch.delenv('DAVBACKUP_ENV', raising=False)

        assert get_config() is ProductionConfig


class TestResolveBaseUrl:

    @pytest.mark.parametrize("dav,expected", [
        ('box', 'https://dav.box.com/dav'),
        ('yandex', 'https://webdav.yandex.com'),
        ('https://cloud.example.com/remote.php/dav/', 'https://cloud.example.com/remote.php/dav'),
    ])
    def test_resolve(self, dav, expected):
        assert resolve_base_url(dav) == expected


class TestNormalizeDavDir:

    @pytest.mark.parametrize("path,expected", [
        ('backup', '/backup'),
        ('/backup/', '/backup'),
        ('//backup//nightly/', '/backup/nightly'),
        ('/', '/'),
        ('', '/'),
        (None, '/backup'),
    ])
    def test_normalize(self, path, expected):
        assert normalize_dav_dir(path) == expected


class TestBuildOptions:
    """Test build_options function."""

    def test_defaults_merged(self):
        options = build_options(name='nightly', dav='box', dav_login='u', dav_pass='p', mysql_db='shop')

        assert options.mysql_host == 'localhost'
        assert options.mysql_port == 3306
        assert options.mongo_host == 'localhost'
        assert options.mongo_port == 27017
        assert options.retries == 1
        assert options.days_to_keep is None
        assert options.dav_dir == '/backup'
        assert options.dav_base_url == 'https://dav.box.com/dav'

    def test_none_values_use_defaults(self):
        options = build_options(
            name='nightly', dav='box', dav_login='u', dav_pass='p',
            mysql_host=None, mysql_port=None, dav_dir=None, retries=None
        )

        assert options.mysql_host == 'localhost'
        assert options.mysql_port == 3306
        assert options.dav_dir == '/backup'
        assert options.retries == 1

    def test_sequences_become_tuples(self):
        options = build_options(
            name='nightly', dav='box', dav_login='u', dav_pass='p',
            dirs=['/a', '/b'], exclude_dirs=['/a/tmp']
        )

        assert options.dirs == ('/a', '/b')
        assert options.exclude_dirs == ('/a/tmp',)

    def test_options_are_immutable(self):
        options = build_options(name='nightly', dav='box', dav_login='u', dav_pass='p')

        with pytest.raises(dataclasses.FrozenInstanceError):
            options.name = 'other'

    @pytest.mark.parametrize("name", ['night-ly', 'night_ly', '', 'nightly!'])
    def test_name_must_be_alphanumeric(self, name):
        with pytest.raises(ValueError, match="alphanumeric"):
            build_options(name=name, dav='box', dav_login='u', dav_pass='p')

    def test_negative_retries(self):
        with pytest.raises(ValueError, match="Retries"):
            build_options(name='nightly', dav='box', dav_login='u', dav_pass='p', retries=-1)

    def test_has_targets(self):
        base = dict(name='nightly', dav='box', dav_login='u', dav_pass='p')

        assert not build_options(**base).has_targets
        assert build_options(dirs=['/data'], **base).has_targets
        assert build_options(mysql_db='shop', **base).has_targets
        assert build_options(mongo_db='users', **base).has_targets

    def test_backup_options_direct(self):
        options = BackupOptions(name='nightly', dav='yandex', dav_login='u', dav_pass='p')

        assert options.dav_dir == '/backup'
        assert options.dirs == ()

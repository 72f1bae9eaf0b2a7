#!/usr/bin/env python3
"""Command line runner"""
from davbackup.cli import main

if __name__ == '__main__':
    # e.g. cron: python run.py --name nightly --dirs /data --dav yandex ...
    main()

#!/usr/bin/env python3
"""Runner for use without installing the package (e.g. from cron)."""
from pgbackup.cli import main

if __name__ == '__main__':
    main()

#!/usr/bin/env python3
"""Backup manager runner"""
import sys
from backup_manager.cli import main

if __name__ == '__main__':
    sys.exit(main())

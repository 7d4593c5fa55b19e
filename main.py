"""
Practice Log - Main entry point
"""
import sys

from practicelog.cli import main

if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Entry point for running maestro as a module.

Usage:
    python -m maestro <send|monitor|emulator> [options]
"""

import sys

from maestro.cli import main

sys.exit(main())

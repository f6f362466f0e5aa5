"""
Entry point for running osc_bridge as a module.

Usage:
    python -m osc_bridge
"""

import sys
from .relay_service import main

if __name__ == "__main__":
    sys.exit(main())

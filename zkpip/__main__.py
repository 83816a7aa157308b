"""Entry point for ``python -m zkpip``."""

import sys

from zkpip.cli import main

if __name__ == "__main__":
    sys.exit(main())

"""Allow ``python -m deplock``."""

import sys

from deplock.cli import main

if __name__ == "__main__":
    sys.exit(main())

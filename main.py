"""
Slotkeeper — Entry Point.

`python main.py HOST_ID EVENT_TYPE_ID` prints the host's bookable slots.
"""

import sys

from slotkeeper.cli import main

if __name__ == "__main__":
    sys.exit(main())

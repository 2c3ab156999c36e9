"""Application entrypoint.

Equivalent to the ``appregistry-server`` console script.
"""

from __future__ import annotations

import sys

from appregistry.cli import main

if __name__ == "__main__":
    sys.exit(main())

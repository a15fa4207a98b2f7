"""Allow running as ``python -m kbcore``."""

import sys

from .cli import main

sys.exit(main())

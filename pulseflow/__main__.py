"""Allow ``python -m pulseflow``."""

import sys

from pulseflow.cli import main

sys.exit(main())

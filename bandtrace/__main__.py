"""Allow running as python -m bandtrace."""

import sys

from .cli import main

sys.exit(main())

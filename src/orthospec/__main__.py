"""Allow ``python -m orthospec``."""

import sys

from orthospec.cli import main

sys.exit(main())

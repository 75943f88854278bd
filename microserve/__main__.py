"""Allow ``python -m microserve``."""

import sys

from microserve.cli.main import main

sys.exit(main())

"""Allow ``python -m npm_ioc_scan``."""

import sys

from npm_ioc_scan.cli import main

sys.exit(main())

"""Allow ``python -m v4m``."""

import sys

from v4m.cli import main

sys.exit(main())

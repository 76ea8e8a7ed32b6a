"""Allow ``python -m pyreconcile``."""

import sys

from pyreconcile.cli import main

sys.exit(main())

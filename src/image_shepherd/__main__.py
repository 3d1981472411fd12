"""Allow ``python -m image_shepherd``."""

import sys

from image_shepherd.cli import main

sys.exit(main())

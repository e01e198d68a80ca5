"""Allow running as: python -m audible_session"""

import sys

from .cli import main

sys.exit(main())

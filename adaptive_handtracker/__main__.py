"""Allow running with: python -m adaptive_handtracker"""

import sys

from .handtracker_app import main

sys.exit(main())

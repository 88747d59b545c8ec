"""Allow ``python -m notesauth``."""

import sys

from .cli import main


sys.exit(main())

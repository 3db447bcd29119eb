"""Allow ``python -m src.cli`` execution."""

import sys

from src.cli.kb import main

sys.exit(main())

import sys

from research_fetch.cli import main

sys.exit(main())

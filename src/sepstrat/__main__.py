import sys

from sepstrat.cli import main

sys.exit(main())

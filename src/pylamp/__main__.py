import sys

from pylamp.cli import main

sys.exit(main())

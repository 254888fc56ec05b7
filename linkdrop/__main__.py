import sys

from linkdrop.cli import main

sys.exit(main())

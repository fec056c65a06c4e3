import sys

from commitreel.cli import main

sys.exit(main())

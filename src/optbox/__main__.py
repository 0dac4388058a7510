import sys

from optbox.cli import main

sys.exit(main())

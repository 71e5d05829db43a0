import sys

from testclusters.cli import main

sys.exit(main())

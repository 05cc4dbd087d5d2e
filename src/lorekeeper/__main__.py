import sys

from lorekeeper.cli import main

sys.exit(main())

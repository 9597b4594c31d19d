import sys

from serverbackup.cli import main


sys.exit(main())

import sys

from sender_extract.cli import main

sys.exit(main())

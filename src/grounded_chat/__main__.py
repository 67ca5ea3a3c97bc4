import sys

from grounded_chat.cli.main import main

sys.exit(main())

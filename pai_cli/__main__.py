import sys

from pai_cli.cli_main import main

sys.exit(main())

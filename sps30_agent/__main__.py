import sys

from sps30_agent.cli import main

sys.exit(main())

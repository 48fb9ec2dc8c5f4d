import sys

from pipeline_runner.cli import main

sys.exit(main())

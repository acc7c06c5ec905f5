"""Allow running as: python -m devpipe"""
import sys

from devpipe.cli import main

sys.exit(main())

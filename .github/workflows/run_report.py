"""
Thin CLI wrapper so GitHub Actions (or any scheduler) can run the
DMS report pipeline once and exit with an appropriate code.
"""

import sys
from pathlib import Path

# the workflow runs this file from a checkout, not an installed package
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from dmsreport.cli import main  # noqa: E402


if __name__ == "__main__":
    sys.exit(main())

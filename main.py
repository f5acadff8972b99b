"""
mtm_replay – Main entry point.

Forwards to the report replay action so `python main.py --ledger ...`
behaves like `python actions/run_report_replay.py --ledger ...`.
"""

import sys

from actions.run_report_replay import main as run_report_replay


def main() -> int:
    """Run the report replay with the process arguments."""
    return run_report_replay(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())

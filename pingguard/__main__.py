"""
Minimal entry point so the supervisor can be started with `python -m pingguard`.
"""
import sys

from pingguard.main import main

if __name__ == "__main__":
    sys.exit(main())

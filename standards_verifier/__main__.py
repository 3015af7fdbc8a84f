"""Allow running as: python -m standards_verifier"""
import sys

from .cli import main

sys.exit(main())

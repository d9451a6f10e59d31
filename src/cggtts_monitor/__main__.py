"""Allow running as ``python -m cggtts_monitor``."""

from .main import main

main()

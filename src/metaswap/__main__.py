"""Allow running with python -m metaswap."""

from metaswap.main import main

main()

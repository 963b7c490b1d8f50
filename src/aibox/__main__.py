"""Allow ``python -m aibox``."""

from aibox.cli import main

main()

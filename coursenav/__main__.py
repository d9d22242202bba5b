"""Allow running as python -m coursenav."""

from coursenav.cli import main

main()

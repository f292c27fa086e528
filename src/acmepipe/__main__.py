"""Allow ``python -m acmepipe``."""

from acmepipe.cli.main import main

main()

"""Allow ``python -m acmeflow``."""

from acmeflow.cli.main import main

main()

"""Allow ``python -m memoria.cli`` execution."""

from memoria.cli.commands import main

main()

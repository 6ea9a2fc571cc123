"""Allow ``python -m careline``."""

from careline.cli.app import app

app()

"""Allow ``python -m powerlevel``."""

from powerlevel.cli import app

app()

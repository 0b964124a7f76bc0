"""Allow running volcache as ``python -m volcache``."""

from volcache.cli import app

if __name__ == "__main__":
    app()

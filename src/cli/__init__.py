"""Command-line interface for Azure Sidekick.

Usage:
    python -m src.cli.main chat                          # Interactive chat mode
    python -m src.cli.main ask "What is Blob Storage?"  # Single question
    python -m src.cli.main config                        # Show configuration
"""

from src.cli.main import app

__all__ = ["app"]

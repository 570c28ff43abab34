"""Bashpilot - a terminal agent that runs bash and edits files locally."""

__version__ = "0.1.0"

from bashpilot.config import Config
from bashpilot.main import main

__all__ = ["Config", "main", "__version__"]

"""Payment broker and daily call counter backed by Google Sheets."""

__version__ = "0.1.0"

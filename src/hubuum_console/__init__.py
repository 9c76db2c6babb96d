"""Backend-for-frontend for the Hubuum console."""

__version__ = "0.1.0"

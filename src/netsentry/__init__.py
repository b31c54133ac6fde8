"""NetSentry — host connection monitoring and classification."""

__version__ = "0.1.0"

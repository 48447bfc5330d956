"""Building blocks for a push-based instant messaging service."""

__version__ = "2.0.0"
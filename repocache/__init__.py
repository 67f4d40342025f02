"""Local cache of shallow git checkouts with a locked JSON manifest."""

__version__ = "0.1.0"

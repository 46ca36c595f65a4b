"""DevCast: developer activity to social posts, with chat approval."""

__version__ = "0.1.0"

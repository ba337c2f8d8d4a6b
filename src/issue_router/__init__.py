"""Route incoming issues to the right GitHub repository."""

__version__ = "0.1.0"

"""diskbin - disk usage map and recoverable delete."""

__version__ = "0.1.0"

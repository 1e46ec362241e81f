"""Print the distinct sender addresses of messages under a Gmail label."""

__version__ = "0.1.0"

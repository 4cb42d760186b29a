"""PostgreSQL database helper tools."""

__version__ = "2.0.0"

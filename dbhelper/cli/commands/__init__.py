"""CLI command modules.

Commands:
- copy: Copy a database to another database or server
"""

from .copy import copy

__all__ = ["copy"]

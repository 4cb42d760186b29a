"""Runtime configuration and logging setup."""

"""depmanager - dependency graph resolution for git-fetched build dependencies."""

__version__ = "1.0.0"

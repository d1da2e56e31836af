"""repokeeper - inventory, inspect and safely sync many git repositories."""

__version__ = "0.3.0"

"""
Top-level package for commit_sage.

This package exposes the main CLI entry point via the
``commit_sage.cli`` module.
"""

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

try:
    __version__ = version("commit-sage")
except PackageNotFoundError:
    # Running from a source checkout without an installed distribution
    __version__ = "0.1.0.dev0"

"""Zhort: passkey authentication and guarded administration for the link service."""

from zhort.version import __version__

__all__ = ["__version__"]

"""
Chat with a language model that can pack GitHub repositories into context.
"""
from .version import __version__

__all__ = ["__version__"]

"""Version lookup for repochat.

An installed distribution reports its own metadata; a plain source checkout
falls back to the ``VERSION`` file shipped inside the package.
"""

from __future__ import annotations

from functools import lru_cache
from importlib import metadata, resources

_DISTRIBUTION = "repochat"


def _bundled_version() -> str:
    try:
        return resources.files(__package__ or _DISTRIBUTION).joinpath("VERSION").read_text(
            encoding="utf-8"
        ).strip()
    except (FileNotFoundError, ModuleNotFoundError):
        return "0.0.0+unknown"


@lru_cache(maxsize=1)
def get_version() -> str:
    try:
        return metadata.version(_DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return _bundled_version()


__version__ = get_version()

__all__ = ["__version__", "get_version"]

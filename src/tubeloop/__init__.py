"""tubeloop - self-healing looping YouTube player."""

from tubeloop.__about__ import __version__

__all__ = ["__version__"]

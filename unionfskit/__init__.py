"""Union, caching and archive file systems on paths, plus splice-based copying."""

__version__ = "0.1.0"
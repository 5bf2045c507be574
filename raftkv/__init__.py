"""In-process Raft consensus with a replicated key-value store and shell."""

__version__ = "0.1.0"
__all__ = ["__version__"]
"""foldwise: content-aware directory reorganizer."""

__version__ = "0.1.0"

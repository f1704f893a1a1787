"""Client-side state layer for the community wall feed."""

__version__ = "0.1.0"

"""Resolve local model files to registry metadata."""

__version__ = "0.3.0"

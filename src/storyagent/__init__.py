"""Streaming tool-calling agent for video storytelling projects."""

__version__ = "0.1.0"

__all__ = ["__version__"]

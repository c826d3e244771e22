"""Iterative image-generation chat: Gemini stream bridge and async client."""

__version__ = "0.1.0"

"""Asynchronous generation orchestrator for image and video providers."""

__version__ = "0.1.0"

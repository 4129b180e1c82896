"""Moodstream: hybrid local/remote content resolution and streaming delivery."""

__version__ = "0.4.0"

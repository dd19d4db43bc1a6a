"""Myo armband to Socket.IO message bus relay."""

__version__ = "0.1.0"

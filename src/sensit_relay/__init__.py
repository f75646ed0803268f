"""Relay Sensit door-sensor callbacks and keep a chat presence alive while the door is open."""

__version__ = "0.1.0"

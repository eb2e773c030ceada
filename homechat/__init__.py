"""HomeChat: ask questions about your home data in plain English."""

__version__ = "0.1.0"

"""Multi-agent writing room: agents and a user co-editing one document."""

__version__ = "0.1.0"

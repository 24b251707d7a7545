"""Desktop work timer that infers activity state from the foreground app and idle time."""

__version__ = "0.3.0"

"""Client library for the Redis serialization protocol: command formatting, reply objects, and blocking and callback-driven contexts."""

__version__ = "1.0.3"
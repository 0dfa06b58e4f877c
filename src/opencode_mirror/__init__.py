"""Mirror an OpenCode server's session graph into a bounded local cache."""

__version__ = "0.1.0"

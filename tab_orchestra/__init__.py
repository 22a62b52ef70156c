"""Tab Orchestra: a group relay for shared browser tabs and a clustering client."""

__version__ = "0.1.0"

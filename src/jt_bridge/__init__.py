"""
JT Bridge Service package.

A loopback WebSocket service that receives JSON commands from a trusted UI
client and answers with binary frames. Its main command converts AJT text
into JT bytes through an external converter executable.
"""

__all__ = ["__version__"]

__version__ = "1.0.0"

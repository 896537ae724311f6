"""
OneLine - timeline generation service.

Relays a free-text query to an upstream chat-completions service, streams
the answer back, and parses it into a chronologically ordered timeline of
events while it is still arriving.
"""

__version__ = "0.3.0"

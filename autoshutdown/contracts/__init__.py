"""
Contracts (Protocols) for autoshutdown.

Using Protocol enables structural subtyping - no inheritance required.
"""

from .channel import EXIT, INIT, READY, MessageHandler, ParentChannel

__all__ = [
    "EXIT",
    "INIT",
    "READY",
    "MessageHandler",
    "ParentChannel",
]

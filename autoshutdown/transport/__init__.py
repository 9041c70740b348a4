"""
Transport - Controller/client channel implementations.
"""

from .ipc import IPC_FD_ENV, ClientProcess, SocketChannel, connect_parent, is_child, spawn

__all__ = [
    "IPC_FD_ENV",
    "ClientProcess",
    "SocketChannel",
    "connect_parent",
    "is_child",
    "spawn",
]

"""Broadcast a file through a shared-memory ring buffer with XOR encryption."""

__version__ = "0.1.0"

__all__ = ["shared", "initializer", "emitter", "receiver", "finalizer"]
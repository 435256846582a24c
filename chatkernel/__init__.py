"""chatkernel -- a chat-style notebook kernel backed by a local language model."""

__version__ = "0.1.0"

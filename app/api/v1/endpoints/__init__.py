from . import chat

__all__ = ["chat"]

"""
Core AI Library - Shared types for the dialogue engine
"""
from .types import (
    Action,
    ActionType,
    AppSource,
    AuthenticatedUser,
    CompletionResult,
    ScratchContext,
    ScreenContext,
    SideCollectors,
    ToolCall,
    ToolContext,
)

__all__ = [
    "Action",
    "ActionType",
    "AppSource",
    "AuthenticatedUser",
    "CompletionResult",
    "ScratchContext",
    "ScreenContext",
    "SideCollectors",
    "ToolCall",
    "ToolContext",
]

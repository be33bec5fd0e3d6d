"""
Tools the assistant can call during the dialogue loop
"""
from .catalog import MUTATING_TOOLS, TOOL_SPECS, ToolSpec, tool_definitions
from .executor import ToolExecutor

__all__ = ["MUTATING_TOOLS", "TOOL_SPECS", "ToolSpec", "ToolExecutor", "tool_definitions"]

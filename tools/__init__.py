#!/usr/bin/env python3
"""
Tools Package

Tool implementations the agent exposes to the model:

- terminal_tool: Local command execution with timeout and structured results
"""

from .terminal_tool import (
    EXECUTE_COMMAND_SCHEMA,
    EXECUTE_COMMAND_TOOL,
    TERMINAL_TOOL_DESCRIPTION,
    execute_command,
    handle_tool_call,
)


def get_tool_definitions() -> list:
    """OpenAI-format schemas for every tool the agent can call."""
    return [EXECUTE_COMMAND_SCHEMA]


__all__ = [
    "EXECUTE_COMMAND_SCHEMA",
    "EXECUTE_COMMAND_TOOL",
    "TERMINAL_TOOL_DESCRIPTION",
    "execute_command",
    "get_tool_definitions",
    "handle_tool_call",
]

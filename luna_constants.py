"""Shared constants for Luna Agent.

Import-safe module with no dependencies; it can be imported from anywhere
without risk of circular imports.
"""

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

DEFAULT_MODEL = "anthropic/claude-sonnet-4"
DEFAULT_AGENT_NAME = "Luna"
DEFAULT_LOGS_DIR = "conversation-logs"

LUNA_HOME_ENV = "LUNA_HOME"

"""Exception types shared by the agent package.

Import-safe module with no dependencies.
"""


class LunaError(Exception):
    """Base class for all agent errors."""
    pass


class MalformedConversationError(LunaError):
    """Raised when a conversation file or file name cannot be interpreted."""
    pass


class MalformedTurnError(MalformedConversationError):
    """Raised when a single entry of a conversation log is not a valid turn."""
    pass


class IdentityRepairError(LunaError):
    """Raised when a conversation file cannot be moved to its computed path.

    Never escapes ConversationIdentity: callers log it and keep the old path.
    """
    pass


class InvalidTransitionError(LunaError):
    """Raised when the session state machine is driven out of order."""
    pass


class GenerationError(LunaError):
    """Raised when the remote generation call fails.

    Carries a human-readable hint (usually about credentials) for the operator.
    """

    def __init__(self, message: str, hint: str = ""):
        super().__init__(message)
        self.hint = hint

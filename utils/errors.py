class TokenError(Exception):
    """Base class for every error raised by the token helpers."""


class InvalidArgument(TokenError, ValueError):
    """A caller passed a value outside an operation's domain."""


class ParseError(TokenError, ValueError):
    """A cooldown label did not match the expected ``HHhMMm`` shape."""

    def __init__(self, label, reason: str = "unrecognised cooldown label"):
        super().__init__(f"{reason}: {label!r}")
        self.label = label


class InvariantViolation(TokenError):
    """A stored token state is outside ``[0, max_tokens]``."""

class ValidationError(ValueError):
    """A tool call is malformed or misses a required argument. Never retried."""


class DomainError(RuntimeError):
    """A domain handler rejected the request (bad SQL, unconfigured relay, ...)."""


class TimeoutExhausted(DomainError):
    """A target surface never reported ready within its attempt ceiling."""


class RecoverableChannelError(RuntimeError):
    """The automation surface channel is not established yet or was torn down."""

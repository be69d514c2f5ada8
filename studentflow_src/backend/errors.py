"""Error types shared by the AI pipeline and the HTTP layer."""


class ValidationError(ValueError):
    """Caller-supplied input is missing or malformed."""


class NoProviderAvailable(Exception):
    """No text-generation provider is configured, or every provider failed."""


class MalformedAIResponse(Exception):
    """Provider output could not be parsed into the expected shape."""


class PersistenceError(Exception):
    """A cache or suggestion row could not be written."""

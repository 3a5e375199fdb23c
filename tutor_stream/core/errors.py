"""Error taxonomy for tutoring turns.

Completion-service failures are classified once, at the completion client
seam, so the transport can decide between retrying, degrading and ending the
turn without inspecting SDK-specific exception types.
"""


class TutorStreamError(Exception):
    """Base class for tutoring stream errors."""

    # Whether a client may reasonably retry the same request later.
    recoverable: bool = True
    # Short label sent in the ``error`` event.
    label: str = "AI service error"
    # Apology shown to the user when this error ends a turn.
    apology: str = (
        "I'm sorry, but I encountered a technical issue while processing your request. "
        "Please try again."
    )


class CompletionError(TutorStreamError):
    """The completion service failed."""


class ContextLengthExceededError(CompletionError):
    """The prompt did not fit the model's context window."""

    label = "Context length exceeded"
    apology = (
        "I'm having trouble processing your question with this much context. "
        "Could you try asking a shorter question?"
    )


class TransientCompletionError(CompletionError):
    """Rate limit, overload, or network fault; may succeed on retry."""

    label = "AI service issue"
    apology = (
        "I'm having trouble processing your question right now. "
        "Could you try asking a shorter question or try again in a moment?"
    )


class CompletionConfigurationError(CompletionError):
    """Missing, malformed or rejected credentials. Retrying cannot help."""

    recoverable = False
    label = "Configuration error"
    apology = "I'm sorry, but the AI service is not properly configured. Please contact support."


class StreamTimeoutError(TutorStreamError):
    """The turn exceeded its hard time limit."""

    recoverable = False
    label = "Stream timeout reached"
    apology = (
        "I'm sorry, that took too long to answer. "
        "Please try asking a shorter or more specific question."
    )


class ManualRetryRequiredError(TutorStreamError):
    """Automatic reconnection gave up; the user has to retry explicitly."""

    recoverable = False
    label = "Connection lost"
    apology = "Connection lost. Please retry your question."

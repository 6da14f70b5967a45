# pagepilot/errors.py
"""
Failures a resolver can surface to its caller.

Malformed model output and failed ledger writes are deliberately absent:
the first becomes a Fallback outcome, the second a PersistResult.
"""


class PilotError(Exception):
    status_code = 500
    answer = "Sorry. Something went wrong. Please try again."

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ActionValidationError(PilotError):
    status_code = 400
    answer = "Sorry. I could not understand that request."

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class ConversationNotFoundError(PilotError):
    status_code = 404
    answer = "Sorry. I could not find this conversation."

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class SchedulerError(PilotError):
    status_code = 503
    answer = "Sorry. I am busy right now. Please try again in a moment."


class SchedulerExhaustedError(SchedulerError):
    """Admission did not happen within the caller's patience budget."""

    def __init__(self, waited_seconds: float, weight: int):
        super().__init__(
            f"Call of weight {weight} was not admitted within {waited_seconds:.1f}s"
        )
        self.waited_seconds = waited_seconds
        self.weight = weight


class SchedulerTimeoutError(SchedulerError):
    """An admitted call ran past its execution timeout."""

    status_code = 504
    answer = "Sorry. That took too long. Please try again."

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Model call exceeded {timeout_seconds:.1f}s")
        self.timeout_seconds = timeout_seconds


class InferenceRateLimitedError(PilotError):
    """The inference service itself answered with a rate-limit signal."""

    status_code = 429
    answer = "Sorry. I am getting too many requests. Please try again soon."

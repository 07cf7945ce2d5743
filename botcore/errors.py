"""
Error taxonomy for the bot runtime.

Validation and duplicate-seal errors are raised synchronously to callers.
Not-found, duplicate and unknown-user errors are permanent for a queue item
and stall its lane. Transient transport errors are retried with backoff.
Developer errors (faults in hook or strategy code) stall the lane and are
surfaced as process-level error events tagged with an action name.
"""


class BotError(Exception):
    """Base exception for bot runtime operations."""

    def __init__(self, message: str, action: str | None = None, recoverable: bool = False):
        super().__init__(message)
        self.action = action
        self.recoverable = recoverable


class ValidationError(BotError, ValueError):
    """Malformed enqueue input. Never queued."""


class NotFoundError(BotError):
    """The target of an operation does not exist."""


class DuplicateError(BotError):
    """The operation was already performed."""


class UnknownUserError(NotFoundError):
    """The counterparty does not know the recipient."""


class TransientTransportError(BotError):
    """Delivery failed for a reason that may go away on retry."""

    def __init__(self, message: str, status_code: int | None = None, action: str | None = None):
        super().__init__(message, action=action, recoverable=True)
        self.status_code = status_code


class DeveloperError(BotError):
    """A fault in handler or strategy code. Requires a code fix and restart."""


class DuplicateSealRequestError(DuplicateError):
    """A seal for this link is already being processed."""

    def __init__(self, link: str):
        super().__init__(f"seal for link {link} already exists", action="seal")
        self.link = link


class SealTransitionError(BotError):
    """A ledger notification arrived out of order or for the wrong transaction."""


class HookError(DeveloperError):
    """A hook handler failed. Treated like any other fault in strategy code."""

    def __init__(self, event: str, cause: BaseException):
        super().__init__(f"hook '{event}' failed: {cause}", action=event)
        self.event = event
        self.cause = cause


class QueueClearedError(BotError):
    """The queued item was purged before it was processed."""


class MaxAttemptsExceededError(BotError):
    """A retryable item ran out of attempts."""

    def __init__(self, attempts: int, cause: BaseException):
        super().__init__(f"failed after {attempts} attempts: {cause}")
        self.attempts = attempts
        self.cause = cause


# Python faults that are never worth retrying
PROGRAMMING_ERRORS = (TypeError, NameError, AttributeError)


def is_not_found_error(err: BaseException) -> bool:
    return isinstance(err, NotFoundError)


def is_duplicate_error(err: BaseException) -> bool:
    return isinstance(err, DuplicateError)


def is_unknown_user_error(err: BaseException) -> bool:
    return isinstance(err, UnknownUserError)


def is_developer_error(err: BaseException) -> bool:
    return isinstance(err, DeveloperError)


def developer(err: BaseException) -> DeveloperError:
    """Wrap an arbitrary exception as a DeveloperError, keeping the cause."""
    if isinstance(err, DeveloperError):
        return err

    wrapped = DeveloperError(str(err) or err.__class__.__name__)
    wrapped.__cause__ = err
    return wrapped


def for_action(err: BaseException, action: str) -> BaseException:
    """Tag an error with the action that produced it."""
    err.action = action
    return err

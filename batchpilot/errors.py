"""
Error classes for batchpilot.

The lifecycle stages raise these errors; the orchestrator catches them at
the run boundary, runs teardown, and reports them:
- RemoteServiceError: The backend rejected a request
- ProvisionError / NoMatchingImage: The pool could not be created or reused
- ProvisionTimeout: The pool did not become usable in time
- SubmissionError: The job or its task batch was rejected
- CompletionTimeout: The tasks did not finish in time

No error is retried. A transient backend failure ends the run.
"""

from typing import Optional


class BatchpilotError(Exception):
    """Base exception for batchpilot."""
    pass


class ConfigError(BatchpilotError):
    """Configuration is missing or invalid."""
    pass


class RemoteServiceError(BatchpilotError):
    """
    The remote service rejected a request.

    Carries the service error code, its message and the key/value detail
    pairs the service attached to the rejection.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[list[tuple[str, str]]] = None,
    ):
        self.code = code
        self.message = message
        self.details = list(details or [])
        super().__init__(f"{code}: {message}")


class ProvisionError(BatchpilotError):
    """The pool could not be created or resized."""
    pass


class NoMatchingImage(ProvisionError):
    """No verified Linux image matches the requested publisher and offer."""

    def __init__(self, publisher: str, offer: str):
        self.publisher = publisher
        self.offer = offer
        super().__init__(
            f"No verified Linux image found for publisher={publisher!r} offer={offer!r}"
        )


class WaitTimeout(BatchpilotError):
    """A waiting phase ran past its deadline."""

    def __init__(self, reason: str, timeout: float):
        self.reason = reason
        self.timeout = timeout
        super().__init__(f"{reason} (timeout {timeout:g}s)")


class ProvisionTimeout(WaitTimeout):
    """The pool did not reach a usable state in the allotted time."""
    pass


class CompletionTimeout(WaitTimeout):
    """The job's tasks did not complete in the allotted time."""
    pass


class SubmissionError(BatchpilotError):
    """The job or its task batch could not be submitted."""
    pass


def find_remote_error(exc: BaseException) -> Optional[RemoteServiceError]:
    """Return the first RemoteServiceError on the exception's cause chain."""
    current: Optional[BaseException] = exc
    seen = set()
    while current is not None and id(current) not in seen:
        if isinstance(current, RemoteServiceError):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


def format_remote_error(exc: BaseException) -> list[str]:
    """
    Render an error for the user.

    A RemoteServiceError found on the cause chain is rendered with its code,
    message and every detail pair, one per line. Other errors render as
    their message.

    Args:
        exc: The error to render

    Returns:
        Lines of text, without trailing newlines
    """
    lines = [f"{type(exc).__name__}: {exc}"]
    remote = find_remote_error(exc)
    if remote is None:
        return lines
    if remote is not exc:
        lines.append(f"Caused by {type(remote).__name__}")
    lines.append(f"code = {remote.code}, message = {remote.message}")
    for key, value in remote.details:
        lines.append(f"Detail {key}={value}")
    return lines

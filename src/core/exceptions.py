"""Exception hierarchy for the assistant.

Every error raised by an infrastructure collaborator is a RequestError
carrying an HTTP-style status code. Collaborators log the underlying
failure before raising, so routers only log exceptions that are not
already RequestErrors.
"""

from http import HTTPStatus


class RequestError(Exception):
    """Base error carrying an HTTP-style status code."""

    def __init__(
        self,
        message: str,
        status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = int(status_code)


class GatewayError(RequestError):
    """A language model call failed (missing prompt, model error, bad response)."""


class DirectoryError(RequestError):
    """A resource directory lookup failed (transport or permission failure)."""


class UnsupportedIntentError(Exception):
    """Classification returned a label with no registered handler."""

    def __init__(self, intent: str | None):
        super().__init__(f"No handler registered for intent: {intent!r}")
        self.intent = intent


class EntityExtractionAmbiguousError(Exception):
    """Entity recognition returned no usable storage account name."""

    def __init__(self, response: str, reason: str = "no storage account name"):
        super().__init__(f"Unable to extract storage entities ({reason})")
        self.response = response
        self.reason = reason

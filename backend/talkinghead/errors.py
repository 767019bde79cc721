from __future__ import annotations
"""Exception hierarchy shared by the client, poller, runner and API layer."""


class TalkingHeadError(Exception):
    """Base class for all service errors."""


class ConfigurationError(TalkingHeadError):
    """A required setting (usually the provider credential) is missing."""


class InputValidationError(TalkingHeadError):
    """A submission is missing or carries an unusable input artifact."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class ProviderError(TalkingHeadError):
    """Non-success outcome from the provider (status_code 0 = transport error)."""

    def __init__(self, message: str, status_code: int = 0, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProtocolError(TalkingHeadError):
    """Provider answered successfully but the payload lacks an expected field."""


class PollTimeout(TalkingHeadError):
    """Polling budget exhausted before the provider reached a terminal status."""


class GenerationFailed(TalkingHeadError):
    """Provider explicitly reported that the video generation failed."""


class JobCancelled(TalkingHeadError):
    """A running job was interrupted through its cancellation token."""


class InvalidTransition(TalkingHeadError):
    """Illegal job status change."""


class JobFinished(InvalidTransition):
    """Write refused because the job already reached a terminal status."""

    def __init__(self, message: str, status: str):
        super().__init__(message)
        self.status = status


class JobNotFound(TalkingHeadError):
    """No job record exists for the given id."""


class DispatchError(TalkingHeadError):
    """A job could not be handed to its execution strategy."""

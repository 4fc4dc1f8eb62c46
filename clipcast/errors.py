"""Error taxonomy shared by composition and publishing.

WHY: Callers need to tell configuration mistakes (fix the input, never
retry) apart from publish failures (record on the post, let the user
retry). Publish failures further carry a ``kind`` so the stored error
says whether the account must be reconnected, the network flaked, or
the platform refused the video.

HOW: ConfigurationError subclasses ValueError so generic input-validation
handlers still catch it. PublishError subclasses carry a class-level
``kind`` string that the scheduler stores on the failed status.

RULES:
- Pure composition code raises only ConfigurationError, and only for
  manifestly malformed input (e.g. a broken switching timeline)
- Everything raised inside a publish attempt is caught by the scheduler
"""

from __future__ import annotations

from typing import Optional


class ClipcastError(Exception):
    """Base class for all clipcast errors."""


class ConfigurationError(ClipcastError, ValueError):
    """Malformed configuration: bad switching timeline, unknown destination,
    unknown format, missing client credentials. Fatal, never retried."""


class PublishError(ClipcastError):
    """A publish attempt failed. Recorded on the post as a failed status."""

    kind = "unknown"


class RenderError(PublishError):
    """The renderer collaborator reported a terminal failure."""

    kind = "render"


class CredentialError(PublishError):
    """No stored credential, or refreshing it failed. The user must reconnect."""

    kind = "credential"


class TransientNetworkError(PublishError):
    """A platform call failed for a reason that may go away on retry."""

    kind = "transient"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PublishTimeoutError(TransientNetworkError):
    """Polling exceeded the maximum wait for a terminal platform status."""

    kind = "timeout"


class TerminalPlatformRejection(PublishError):
    """The platform reported the publish as failed or refused the request."""

    kind = "rejected"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


def error_kind(exc: BaseException) -> str:
    """Classify an exception raised inside a publish attempt."""
    if isinstance(exc, PublishError):
        return exc.kind
    if isinstance(exc, ConfigurationError):
        return "configuration"
    return "unknown"

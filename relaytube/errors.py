"""Typed failures raised while resolving and delivering media."""

from __future__ import annotations

from typing import Any, Dict, Optional


class DispatchError(Exception):
    """Base error with the metadata the HTTP boundary needs to render it."""

    error_code = "DISPATCH_ERROR"
    status_code = 500
    reprompt = False

    def __init__(self, message: str, user_message: Optional[str] = None):
        self.message = message
        self.user_message = user_message or message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "reprompt": self.reprompt,
        }


# Extraction


class PasswordRequiredError(DispatchError):
    """The site wants a password and none (or a wrong one) was given."""

    error_code = "PASSWORD_REQUIRED"
    status_code = 401
    reprompt = True

    def __init__(self, message: str = "This video is protected by a password"):
        super().__init__(message, user_message="This video requires a password.")


class ExtractionError(DispatchError):
    """The extractor could not resolve the URL at all."""

    error_code = "EXTRACTION_FAILED"
    status_code = 400


class EmptyUrlError(DispatchError):
    """Extraction succeeded but produced nothing playable."""

    error_code = "EMPTY_URL"
    status_code = 422

    def __init__(self, message: str = "No playable media URL was found"):
        super().__init__(message)


# Format selection


class FormatNotFoundError(DispatchError):
    error_code = "FORMAT_NOT_FOUND"
    status_code = 400

    def __init__(self, token: str, message: Optional[str] = None):
        self.token = token
        super().__init__(
            message or f"Format '{token}' is not available for this video",
            user_message=f"Format '{token}' not available for this video. Refresh formats and pick another quality.",
        )


class InvalidFormatCombinationError(DispatchError):
    error_code = "INVALID_FORMAT_COMBINATION"
    status_code = 400


# Planning


class RemuxDisabledError(DispatchError):
    error_code = "REMUX_DISABLED"
    status_code = 409

    def __init__(self, message: str = "Merging separate video and audio streams is disabled"):
        super().__init__(message, user_message=message + ". Set REMUX=true to enable it.")


class StreamingRequiredError(DispatchError):
    error_code = "STREAMING_REQUIRED"
    status_code = 409

    def __init__(self, message: str = "This download can only be served by streaming, which is disabled"):
        super().__init__(message, user_message=message + ". Set STREAM=true (or STREAM=ask and pass stream=true).")


# Delivery


class UpstreamUnavailableError(DispatchError):
    """The media host failed to connect, answered with an error or dropped mid-transfer."""

    error_code = "UPSTREAM_UNAVAILABLE"
    status_code = 502


class ProcessSpawnError(DispatchError):
    error_code = "PROCESS_SPAWN_FAILED"
    status_code = 500


class ProcessExitError(DispatchError):
    error_code = "PROCESS_EXIT"
    status_code = 500

    def __init__(self, returncode: int, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"ffmpeg exited with code {returncode}"
        super().__init__(detail)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["returncode"] = self.returncode
        return data

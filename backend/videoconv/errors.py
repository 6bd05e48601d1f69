"""
Conversion error types.

All errors inherit from ConversionError. Each carries a ``kind`` (the name
reported to API clients) and the HTTP status the API layer maps it to.
"""


class ConversionError(Exception):
    """Base exception for all conversion failures."""

    kind = "ConversionError"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidFormat(ConversionError):
    """Unsupported input extension or requested output format."""

    kind = "InvalidFormat"
    status_code = 400


class UploadRejected(ConversionError):
    """Upload exceeded the size ceiling or the payload was malformed."""

    kind = "UploadRejected"
    status_code = 400

    def __init__(self, message: str, status_code: int = 400):
        self.status_code = status_code
        super().__init__(message)


class EngineFailure(ConversionError):
    """The transcoding engine failed or crashed mid-run."""

    kind = "EngineFailure"
    status_code = 500


class ArtifactNotFound(ConversionError):
    """Output was never produced (failed job, unknown or unsafe name)."""

    kind = "ArtifactNotFound"
    status_code = 404


class ArtifactExpired(ConversionError):
    """Output existed but the retention window has elapsed."""

    kind = "ArtifactExpired"
    status_code = 410


class StorageUnavailable(ConversionError):
    """Working directories cannot be created or written."""

    kind = "StorageUnavailable"
    status_code = 503


class JobNotFound(ConversionError):
    """Raised when a job id is not in the registry."""

    kind = "JobNotFound"
    status_code = 404

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidRequest(ConversionError):
    """Request is well-formed but asks for something unsupported."""

    kind = "InvalidRequest"
    status_code = 400

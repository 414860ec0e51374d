"""
Error taxonomy for the generation lifecycle.

Validation and cancellation errors are raised to the caller. Provider and
artifact errors raised while polling are logged by the coordinator and
retried on the next poll.
"""

from typing import Optional


class GenerationError(Exception):
    """Base class for every lifecycle error."""

    error_code: str = "GENERATION_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        if error_code:
            self.error_code = error_code
        super().__init__(message)


class ValidationError(GenerationError):
    """Submission parameters are malformed or out of range."""

    error_code = "INVALID_PARAMETERS"

    def __init__(self, details: list[dict]):
        self.details = details
        fields = ", ".join(d["field"] for d in details) or "payload"
        super().__init__(f"Invalid parameters: {fields}")


class ProviderError(GenerationError):
    """Transport failure or non-success response from the provider."""

    error_code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        raw: Optional[str] = None,
    ):
        self.raw = raw
        super().__init__(message, error_code)


class UnknownProviderStatus(GenerationError):
    """The provider reported a status outside its documented vocabulary."""

    error_code = "UNKNOWN_PROVIDER_STATUS"

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Unrecognized provider status: {status!r}")


class ArtifactTransferError(GenerationError):
    """A completed job's payload could not be decoded or written."""

    error_code = "ARTIFACT_TRANSFER_FAILED"


class CancelError(GenerationError):
    """Cancellation was rejected; the job may still complete."""

    error_code = "CANCEL_FAILED"


class GenerationNotFound(GenerationError):
    """No stored record for the requested job id."""

    error_code = "NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Generation {job_id} not found")


class ProviderRejected(ProviderError):
    """
    The provider answered and refused the request (4xx other than 408/429).

    The provider is up, so these never count towards opening the circuit.
    """

"""Exception taxonomy for the Pixelforge service.

Every exception raised by the core layer derives from
:class:`PixelforgeError` so that the HTTP layer can translate it into a
structured ``{error}`` response.  The model caller is the exception to
the rule: upstream inference failures are reported as ``None`` rather than
raised, because the pipeline degrades around them.

========================  ======  ======================================
Exception                 Status  Meaning
========================  ======  ======================================
InvalidRequestError       400     Caller input rejected
CapacityExceededError     429     Admission control refused the request
ClusterAPIError           502     Cluster API replied with an error
SpriteGenerationError     503     No drawable shapes could be produced
========================  ======  ======================================
"""

from __future__ import annotations


class PixelforgeError(Exception):
    """Base class for all service errors."""


class InvalidRequestError(PixelforgeError):
    """Raised when caller-supplied input cannot be used."""


class SpriteGenerationError(PixelforgeError):
    """Raised when the structure stage yields nothing drawable.

    The condition is retryable: the caller may submit the same prompt again
    or fall back to a placeholder sprite.

    Attributes:
        reason: Short human-readable reason.
        shape_count: Number of shapes the model returned, when a reply was
            parsed but had too few shapes.
    """

    def __init__(self, reason: str, shape_count: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.shape_count = shape_count


class CapacityExceededError(PixelforgeError):
    """Raised when admitting a deployment would exceed the namespace ceiling."""

    def __init__(self, pod_count: int, requested: int) -> None:
        self.pod_count = pod_count
        self.requested = requested
        super().__init__(
            f"Cluster is busy — {pod_count} pods running. Try fewer replicas or wait."
        )


class ClusterAPIError(PixelforgeError):
    """Raised when the cluster API answers with an unexpected status.

    Attributes:
        status_code: HTTP status returned by the API server, or ``None`` when
            the request never completed (connection error, timeout).
        detail: Truncated response body or transport error message.
    """

    def __init__(self, message: str, status_code: int | None = None, detail: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail

    @property
    def not_found(self) -> bool:
        """Whether the API reported the resource as absent."""
        return self.status_code == 404

"""
Lifecycle precondition errors raised by the service layer
"""


class LifecycleError(Exception):
    """Base class for rejected lifecycle operations."""


class VideoNotFoundError(LifecycleError):
    """Raised when a video does not exist or is hidden by a soft delete."""


class VideoStateError(LifecycleError):
    """Raised when a video is not in a state that allows the operation."""

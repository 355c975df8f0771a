"""
Failure reasons and exceptions for the pointing pipeline.

Components raise a PointingError subclass; the controller turns it into a
structured CommandResult so nothing crashes the request path.
"""

from enum import Enum
from typing import Optional


class FailureReason(str, Enum):
    """Structured reason reported to the caller of a failed command."""
    NO_BODIES_IN_FRAME = "no_bodies_in_frame"
    NO_GESTURE_FOUND = "no_gesture_found"
    NO_TRAINING_DATA = "no_training_data"
    NO_HIT = "no_hit"
    SESSION_NOT_FOUND = "session_not_found"
    DEVICE_NOT_FOUND = "device_not_found"
    NOT_TRACKING = "not_tracking"
    BODY_NOT_VISIBLE = "body_not_visible"


class PointingError(Exception):
    """Base class for expected, request-scoped failures."""

    reason: Optional[FailureReason] = None
    default_message = "Pointing request failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def reason_name(self) -> str:
        return self.reason.value if self.reason is not None else "error"


class NoBodiesInFrame(PointingError):
    reason = FailureReason.NO_BODIES_IN_FRAME
    default_message = "No one is visible to the sensor"


class NoGestureFound(PointingError):
    reason = FailureReason.NO_GESTURE_FOUND
    default_message = "Activation gesture not detected"


class NoTrainingData(PointingError):
    reason = FailureReason.NO_TRAINING_DATA
    default_message = "No calibration samples available"


class NoHit(PointingError):
    reason = FailureReason.NO_HIT
    default_message = "Pointing direction did not hit a wall"


class SessionNotFound(PointingError):
    reason = FailureReason.SESSION_NOT_FOUND
    default_message = "User is not registered"


class DeviceNotFound(PointingError):
    reason = FailureReason.DEVICE_NOT_FOUND
    default_message = "Device not found"


class NotTracking(PointingError):
    reason = FailureReason.NOT_TRACKING
    default_message = "Gesture control is not active for this user"


class BodyNotVisible(PointingError):
    reason = FailureReason.BODY_NOT_VISIBLE
    default_message = "Tracked user is not visible to the sensor"

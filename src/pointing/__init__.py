"""
Pointing-gesture device selection.

Modules:
- errors: Failure reasons and exceptions
- frames: Skeleton frame parsing, storage and delivery
- geo: Sensor placement, room geometry, coordinate transform
- tracker: Identity tracking (activation gesture, slot replacement)
- sampler: Aim ray sampling onto room surfaces
- classifier: Device catalog, training set, nearest-neighbour classifier
- session: Per-user session state
- controller: Complete command pipeline with feedback learning
- store: Calibration sample log and replay
- metrics: Classification metrics
- config: Environment configuration and logging setup
- sim: Synthetic skeleton frames and closed-loop simulation
"""

from .errors import (
    FailureReason, PointingError,
    NoBodiesInFrame, NoGestureFound, NoTrainingData, NoHit,
    SessionNotFound, DeviceNotFound, NotTracking, BodyNotVisible
)
from .frames import Body, SkeletonFrame, SkeletonFrameStore, FrameSlot, FrameFeed
from .geo import SensorPlacement, RoomGeometry, CoordinateTransformer
from .tracker import IdentityTracker, ArmRaised, LeastRecentlyActive, TrackedBody
from .sampler import FeatureSample, AimSampler
from .classifier import Device, DeviceCatalog, TrainingSet, NearestNeighborClassifier
from .session import Session, SessionState, SessionRegistry
from .controller import PointingController, CommandResult, DeviceCommand
from .store import SampleStore, load_training_set, validate_sample_log
from .metrics import ClassificationMetrics, MetricsExporter
from .config import PointingConfig, EnvironmentLoader, configure_logging

__all__ = [
    # Errors
    "FailureReason",
    "PointingError",
    "NoBodiesInFrame",
    "NoGestureFound",
    "NoTrainingData",
    "NoHit",
    "SessionNotFound",
    "DeviceNotFound",
    "NotTracking",
    "BodyNotVisible",
    # Frames
    "Body",
    "SkeletonFrame",
    "SkeletonFrameStore",
    "FrameSlot",
    "FrameFeed",
    # Geometry
    "SensorPlacement",
    "RoomGeometry",
    "CoordinateTransformer",
    # Tracking
    "IdentityTracker",
    "ArmRaised",
    "LeastRecentlyActive",
    "TrackedBody",
    # Sampling and classification
    "FeatureSample",
    "AimSampler",
    "Device",
    "DeviceCatalog",
    "TrainingSet",
    "NearestNeighborClassifier",
    # Sessions
    "Session",
    "SessionState",
    "SessionRegistry",
    # Controller
    "PointingController",
    "CommandResult",
    "DeviceCommand",
    # Store
    "SampleStore",
    "load_training_set",
    "validate_sample_log",
    # Metrics
    "ClassificationMetrics",
    "MetricsExporter",
    # Config
    "PointingConfig",
    "EnvironmentLoader",
    "configure_logging",
]

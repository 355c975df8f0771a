"""
Aim sampling: turn a user's arm into a point on the room's walls.

The aim ray runs from the shoulder through the wrist and is extended until it
meets a room surface. The hit point is the feature the classifier works on.
"""

import logging
import numpy as np
from dataclasses import dataclass, field, replace
from typing import Optional, Dict, Any, Tuple

from .frames import SkeletonFrameStore, ARM_JOINTS
from .geo import CoordinateTransformer, RoomGeometry
from .tracker import IdentityTracker, UNBOUND

logger = logging.getLogger(__name__)

Vector3 = Tuple[float, float, float]

MIN_WINDOW_FRAMES = 3


def _vec(values) -> Vector3:
    x, y, z = (float(v) for v in values)
    return (x, y, z)


@dataclass(frozen=True)
class FeatureSample:
    """Projection of an aim ray onto the room, optionally labeled with a device."""
    hit_point: Optional[Vector3]
    label: Optional[str] = None
    joints: Dict[str, Vector3] = field(default_factory=dict)
    surface: Optional[str] = None
    direction: Optional[Vector3] = None

    @property
    def is_hit(self) -> bool:
        return self.hit_point is not None

    @property
    def point(self) -> np.ndarray:
        if self.hit_point is None:
            raise ValueError("No-hit sample has no point")
        return np.array(self.hit_point, dtype=np.float64)

    def with_label(self, label: Optional[str]) -> "FeatureSample":
        return replace(self, label=label)

    @classmethod
    def no_hit(cls, joints: Optional[Dict[str, Vector3]] = None, direction: Optional[Vector3] = None) -> "FeatureSample":
        """Sentinel for an aim ray that left the room without hitting a surface."""
        return cls(hit_point=None, joints=dict(joints or {}), direction=direction)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hit_point": list(self.hit_point) if self.hit_point is not None else None,
            "label": self.label,
            "joints": {name: list(pos) for name, pos in self.joints.items()},
            "surface": self.surface,
            "direction": list(self.direction) if self.direction is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeatureSample":
        hit = data.get("hit_point")
        direction = data.get("direction")
        return cls(
            hit_point=_vec(hit) if hit is not None else None,
            label=data.get("label"),
            joints={name: _vec(pos) for name, pos in (data.get("joints") or {}).items()},
            surface=data.get("surface"),
            direction=_vec(direction) if direction is not None else None,
        )


class AimSampler:
    """
    Compute feature samples for a session's tracked body.

    Usage:
        sampler = AimSampler(store, transformer, room)
        sample = sampler.sample(session)
        if sample is not None and sample.is_hit:
            device = classifier.classify(sample)
    """

    def __init__(
        self,
        store: SkeletonFrameStore,
        transformer: CoordinateTransformer,
        room: RoomGeometry,
        tracker: Optional[IdentityTracker] = None,
        arm: str = "auto",
        min_window: int = MIN_WINDOW_FRAMES
    ):
        """
        Initialize sampler.

        Args:
            store: Frame store with the current frame and window
            transformer: Sensor-to-room coordinate transformer
            room: Room geometry used for ray intersection
            tracker: Optional tracker whose activity stamps are refreshed
            arm: "auto", "left" or "right"
            min_window: Frames needed before the median filter is used
        """
        if arm not in ("auto", "left", "right"):
            raise ValueError(f"Unknown arm {arm!r}; expected auto, left or right")

        self.store = store
        self.transformer = transformer
        self.room = room
        self.tracker = tracker
        self.arm = arm
        self.min_window = min_window

    def joint_positions(self, body_id: int, windowed: bool = True) -> Optional[Dict[str, np.ndarray]]:
        """
        Get sensor-space joint positions for a body.

        With windowed=True the component-wise median over the window frames
        containing the body is returned; with too few frames the latest
        frame is used instead.
        """
        snapshot = self.store.snapshot()
        body = snapshot.frame.get_body(body_id)
        if body is None:
            return None

        if windowed:
            history = [f.get_body(body_id) for f in snapshot.window]
            history = [b for b in history if b is not None]
            if len(history) >= self.min_window:
                joints: Dict[str, np.ndarray] = {}
                for name in body.joints:
                    values = [b.joints[name] for b in history if name in b.joints]
                    joints[name] = np.median(np.asarray(values, dtype=np.float64), axis=0)
                return joints

        return {name: np.asarray(pos, dtype=np.float64) for name, pos in body.joints.items()}

    def choose_arm(self, room_joints: Dict[str, np.ndarray]) -> Optional[Tuple[str, str]]:
        """Pick the shoulder/wrist pair used for aiming."""
        if self.arm != "auto":
            shoulder, wrist = ARM_JOINTS[self.arm]
            if shoulder in room_joints and wrist in room_joints:
                return shoulder, wrist
            return None

        best = None
        best_height = None
        for shoulder, wrist in ARM_JOINTS.values():
            if shoulder not in room_joints or wrist not in room_joints:
                continue
            height = room_joints[wrist][1] - room_joints[shoulder][1]
            if best_height is None or height > best_height:
                best = (shoulder, wrist)
                best_height = height
        return best

    def sample_from_joints(self, room_joints: Dict[str, np.ndarray], label: Optional[str] = None) -> Optional[FeatureSample]:
        """Build a sample from room-space joints."""
        arm = self.choose_arm(room_joints)
        if arm is None:
            return None

        shoulder, wrist = (np.asarray(room_joints[j], dtype=np.float64) for j in arm)
        source = {name: _vec(pos) for name, pos in room_joints.items()}

        direction = wrist - shoulder
        norm = np.linalg.norm(direction)
        if norm < 1e-6:
            return FeatureSample.no_hit(source)
        unit = _vec(direction / norm)

        hit = self.room.intersect(wrist, direction)
        if hit is None:
            return FeatureSample.no_hit(source, unit)

        point, surface = hit
        return FeatureSample(
            hit_point=_vec(point),
            label=label,
            joints=source,
            surface=surface,
            direction=unit,
        )

    def sample(self, session, windowed: bool = True, label: Optional[str] = None) -> Optional[FeatureSample]:
        """
        Compute the feature sample for a session.

        Args:
            session: Object with a body_id attribute (-1 if unbound)
            windowed: Use the median-filtered window instead of the latest frame
            label: Optional device label for calibration samples

        Returns:
            FeatureSample (possibly the no-hit sentinel), or None if the body
            is unbound, not visible, or has no complete arm
        """
        body_id = getattr(session, "body_id", UNBOUND)
        if body_id == UNBOUND:
            return None

        joints = self.joint_positions(body_id, windowed=windowed)
        if joints is None:
            return None

        if self.tracker is not None:
            self.tracker.touch(body_id)

        room_joints = self.transformer.transform_joints(joints)
        sample = self.sample_from_joints(room_joints, label=label)
        if sample is not None and not sample.is_hit:
            logger.debug(f"Aim ray of body {body_id} missed the room")
        return sample

"""
Geometry module for mapping sensor observations into the room.

Provides functionality to:
- Hold the sensor placement (position, tilt, horizontal orientation)
- Transform joint coordinates from sensor space into room space
- Describe the room as an axis-aligned box and intersect rays with it
"""

import logging
import threading
import numpy as np
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Tuple
from scipy.spatial.transform import Rotation

logger = logging.getLogger(__name__)

# Room surfaces: name -> (axis, 0 for the origin side / 1 for the far side)
SURFACES = {
    "left": (0, 0),
    "right": (0, 1),
    "floor": (1, 0),
    "ceiling": (1, 1),
    "front": (2, 0),
    "back": (2, 1),
}

DEFAULT_SURFACES = ("left", "right", "floor", "front", "back")


@dataclass
class SensorPlacement:
    """Sensor position and angles; angles are in degrees."""
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    tilt_deg: float = 0.0  # pitch about the sensor's horizontal axis
    orientation_deg: float = 0.0  # yaw about the vertical axis

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        self.tilt_deg = float(self.tilt_deg)
        self.orientation_deg = float(self.orientation_deg)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position.tolist(),
            "tilt_deg": self.tilt_deg,
            "orientation_deg": self.orientation_deg,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SensorPlacement":
        return cls(
            position=data.get("position", [0.0, 0.0, 0.0]),
            tilt_deg=data.get("tilt_deg", 0.0),
            orientation_deg=data.get("orientation_deg", 0.0),
        )


@dataclass
class RoomGeometry:
    """
    Room bounding box with one corner at the origin.

    x runs along the width, y is up (height), z runs along the depth.
    Only the listed surfaces count as hit targets.
    """
    width: float
    height: float
    depth: float
    surfaces: Tuple[str, ...] = DEFAULT_SURFACES

    def __post_init__(self):
        if min(self.width, self.height, self.depth) <= 0:
            raise ValueError("Room dimensions must be > 0")
        unknown = [s for s in self.surfaces if s not in SURFACES]
        if unknown:
            raise ValueError(f"Unknown room surfaces: {unknown}")
        self.surfaces = tuple(self.surfaces)

    @property
    def extents(self) -> np.ndarray:
        return np.array([self.width, self.height, self.depth], dtype=np.float64)

    def contains(self, point, tolerance: float = 1e-6) -> bool:
        """Check if a point lies inside the room box (boundary included)."""
        p = np.asarray(point, dtype=np.float64).reshape(3)
        return bool(np.all(p >= -tolerance) and np.all(p <= self.extents + tolerance))

    def intersect(
        self,
        origin,
        direction,
        tolerance: float = 1e-6
    ) -> Optional[Tuple[np.ndarray, str]]:
        """
        Intersect a ray with the enabled room surfaces.

        Args:
            origin: Ray origin (3,)
            direction: Ray direction (3,), need not be normalized
            tolerance: Slack when checking the hit lies within the room

        Returns:
            (hit_point, surface_name) for the nearest forward hit, or None
        """
        o = np.asarray(origin, dtype=np.float64).reshape(3)
        d = np.asarray(direction, dtype=np.float64).reshape(3)
        if np.linalg.norm(d) < 1e-9:
            return None

        extents = self.extents
        best: Optional[Tuple[float, np.ndarray, str]] = None

        for name in self.surfaces:
            axis, side = SURFACES[name]
            if abs(d[axis]) < 1e-12:
                continue  # Ray parallel to this plane

            plane = extents[axis] if side else 0.0
            t = (plane - o[axis]) / d[axis]
            if t <= 1e-9:
                continue

            point = o + t * d
            point[axis] = plane
            if not self.contains(point, tolerance):
                continue

            if best is None or t < best[0]:
                best = (t, point, name)

        if best is None:
            return None
        return best[1], best[2]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "depth": self.depth,
            "surfaces": list(self.surfaces),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoomGeometry":
        return cls(
            width=float(data["width"]),
            height=float(data["height"]),
            depth=float(data["depth"]),
            surfaces=tuple(data.get("surfaces", DEFAULT_SURFACES)),
        )


def rotation_matrix(tilt_deg: float, orientation_deg: float) -> np.ndarray:
    """
    Build the sensor-to-room rotation.

    Tilt is a pitch about x, orientation a yaw about the vertical y axis.
    The result is yaw @ pitch, so the tilt is applied first.
    """
    pitch = Rotation.from_euler("x", np.radians(tilt_deg)).as_matrix()
    yaw = Rotation.from_euler("y", np.radians(orientation_deg)).as_matrix()
    return yaw @ pitch


class CoordinateTransformer:
    """
    Convert sensor-space joint coordinates into room space.

    room = R @ (p - position), with R cached until the placement angles change.

    Usage:
        transformer = CoordinateTransformer(SensorPlacement([2.0, 1.0, 0.0], tilt_deg=-10))
        room_points = transformer.transform(sensor_points)
    """

    def __init__(self, placement: Optional[SensorPlacement] = None):
        """
        Initialize transformer.

        Args:
            placement: Sensor placement (default: at origin, no rotation)
        """
        self._lock = threading.Lock()
        self._placement = placement or SensorPlacement()
        self._rotation = rotation_matrix(self._placement.tilt_deg, self._placement.orientation_deg)
        self.matrix_builds = 1

    @property
    def placement(self) -> SensorPlacement:
        return self._placement

    @property
    def rotation(self) -> np.ndarray:
        """Cached 3x3 rotation matrix."""
        with self._lock:
            return self._rotation.copy()

    def recalibrate(
        self,
        position=None,
        tilt_deg: Optional[float] = None,
        orientation_deg: Optional[float] = None
    ) -> bool:
        """
        Update parts of the sensor placement.

        The rotation matrix is rebuilt only when an angle actually changes.

        Returns:
            True if anything changed
        """
        with self._lock:
            p = self._placement
            new_position = p.position if position is None else np.asarray(position, dtype=np.float64).reshape(3)
            new_tilt = p.tilt_deg if tilt_deg is None else float(tilt_deg)
            new_orientation = p.orientation_deg if orientation_deg is None else float(orientation_deg)

            moved = not np.allclose(new_position, p.position)
            turned = new_tilt != p.tilt_deg or new_orientation != p.orientation_deg

            self._placement = SensorPlacement(new_position, new_tilt, new_orientation)
            if turned:
                self._rotation = rotation_matrix(new_tilt, new_orientation)
                self.matrix_builds += 1

        if moved or turned:
            logger.info(
                f"Sensor placement changed: position={new_position.tolist()}, "
                f"tilt={new_tilt}, orientation={new_orientation}"
            )
        return moved or turned

    def set_placement(self, placement: SensorPlacement) -> bool:
        return self.recalibrate(placement.position, placement.tilt_deg, placement.orientation_deg)

    def transform(self, points) -> np.ndarray:
        """
        Transform sensor-space points to room space.

        Args:
            points: (3,) point or (N, 3) array

        Returns:
            (N, 3) array of room-space points
        """
        pts = np.asarray(points, dtype=np.float64)
        if pts.size == 0:
            return np.zeros((0, 3))
        pts = pts.reshape(-1, 3)

        with self._lock:
            R = self._rotation
            t = self._placement.position

        return (R @ (pts - t).T).T

    def to_sensor(self, points) -> np.ndarray:
        """Inverse of transform: room-space points back to sensor space."""
        pts = np.asarray(points, dtype=np.float64)
        if pts.size == 0:
            return np.zeros((0, 3))
        pts = pts.reshape(-1, 3)

        with self._lock:
            R = self._rotation
            t = self._placement.position

        return (R.T @ pts.T).T + t

    def transform_joints(self, joints: Dict[str, Any]) -> Dict[str, np.ndarray]:
        """Transform a joint-name -> position mapping."""
        names: List[str] = list(joints.keys())
        if not names:
            return {}
        transformed = self.transform([joints[n] for n in names])
        return {name: transformed[i] for i, name in enumerate(names)}

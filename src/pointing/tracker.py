"""
Identity tracking for users in front of the sensor.

Maps transient sensor body ids to tracked slots:
- A gesture filter decides which untracked body is activating control
- A replacement strategy bounds how many bodies are tracked at once
- Bodies leaving the sensor's view are dropped from the tracked set
"""

import itertools
import logging
import numpy as np
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Callable, Protocol, Sequence

from .errors import NoBodiesInFrame, NoGestureFound
from .frames import Body, SkeletonFrame, SkeletonFrameStore, ARM_JOINTS
from .geo import CoordinateTransformer

logger = logging.getLogger(__name__)

UNBOUND = -1


@dataclass
class TrackedBody:
    """A body currently holding a tracking slot."""
    body_id: int
    last_active: int = 0
    actions: int = 0


class ReplacementStrategy(Protocol):
    def decide(self, tracked: Sequence[TrackedBody], capacity: int) -> List[TrackedBody]:
        """Return the tracked bodies to keep before a newcomer is admitted."""
        ...


class GestureFilter(Protocol):
    def decide(self, candidates: Sequence[Body], history: Sequence[SkeletonFrame]) -> Optional[Body]:
        """Return the candidate performing the activation gesture, if any."""
        ...


class LeastRecentlyActive:
    """Evict the bodies with the oldest activity until one slot is free."""

    def decide(self, tracked: Sequence[TrackedBody], capacity: int) -> List[TrackedBody]:
        if len(tracked) < capacity:
            return list(tracked)

        keep = max(capacity - 1, 0)
        by_activity = sorted(tracked, key=lambda t: t.last_active, reverse=True)
        kept_ids = {t.body_id for t in by_activity[:keep]}
        return [t for t in tracked if t.body_id in kept_ids]


class ArmRaised:
    """
    One wrist held above the same-side shoulder for a minimum dwell.

    The dwell is counted in frames of the rolling window that contain the
    body; without a window only the current frame is checked.
    """

    def __init__(
        self,
        dwell_frames: int = 3,
        margin: float = 0.0,
        transformer: Optional[CoordinateTransformer] = None
    ):
        """
        Args:
            dwell_frames: Consecutive frames the arm must stay raised
            margin: Height in meters the wrist must exceed the shoulder by
            transformer: If given, heights are compared in room space
        """
        if dwell_frames < 1:
            raise ValueError("dwell_frames must be >= 1")
        self.dwell_frames = dwell_frames
        self.margin = margin
        self.transformer = transformer

    def elevation(self, body: Body) -> Optional[float]:
        """Highest wrist-over-shoulder height of the body, or None if no arm is visible."""
        best = None
        for shoulder_name, wrist_name in ARM_JOINTS.values():
            if not body.has_joints(shoulder_name, wrist_name):
                continue
            pts = np.array([body.joints[shoulder_name], body.joints[wrist_name]], dtype=np.float64)
            if self.transformer is not None:
                pts = self.transformer.transform(pts)
            height = float(pts[1, 1] - pts[0, 1])
            if best is None or height > best:
                best = height
        return best

    def is_raised(self, body: Body) -> bool:
        height = self.elevation(body)
        return height is not None and height > self.margin

    def decide(self, candidates: Sequence[Body], history: Sequence[SkeletonFrame]) -> Optional[Body]:
        best_body = None
        best_height = None

        for body in candidates:
            if not self.is_raised(body):
                continue

            if history:
                recent = [f.get_body(body.body_id) for f in history]
                recent = [b for b in recent if b is not None][-self.dwell_frames:]
                if len(recent) < self.dwell_frames or not all(self.is_raised(b) for b in recent):
                    continue

            height = self.elevation(body)
            if best_height is None or height > best_height:
                best_body = body
                best_height = height

        return best_body


class IdentityTracker:
    """
    Resolve which sensor body belongs to a user activating gesture control.

    Shares the frame store's lock so resolution never sees a half-updated
    frame or window.

    Usage:
        tracker = IdentityTracker(store)
        body_id = tracker.resolve(session.body_id)
    """

    def __init__(
        self,
        store: SkeletonFrameStore,
        gesture: Optional[GestureFilter] = None,
        replacement: Optional[ReplacementStrategy] = None,
        capacity: int = 2
    ):
        """
        Initialize tracker.

        Args:
            store: Frame store providing the current frame and window
            gesture: Activation gesture filter (default: ArmRaised)
            replacement: Slot replacement policy (default: LeastRecentlyActive)
            capacity: Maximum number of concurrently tracked bodies
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")

        self.store = store
        self.gesture = gesture or ArmRaised()
        self.replacement = replacement or LeastRecentlyActive()
        self.capacity = capacity

        self._tracked: List[TrackedBody] = []
        self._clock = itertools.count(1)
        self._eviction_callback: Optional[Callable[[int], None]] = None

        self.activations = 0
        self.evictions = 0

        store.add_user_left_listener(self._on_user_left)

    @property
    def lock(self):
        return self.store.lock

    def set_eviction_callback(self, callback: Callable[[int], None]) -> None:
        """Set callback for bodies removed by the replacement strategy."""
        self._eviction_callback = callback

    @property
    def tracked(self) -> List[TrackedBody]:
        with self.lock:
            return list(self._tracked)

    @property
    def tracked_ids(self) -> List[int]:
        with self.lock:
            return [t.body_id for t in self._tracked]

    def is_tracked(self, body_id: int) -> bool:
        with self.lock:
            return any(t.body_id == body_id for t in self._tracked)

    def resolve(self, hint: int = UNBOUND) -> int:
        """
        Get the body id of a user activating gesture control.

        Args:
            hint: Body id currently stored for the user (-1 if none)

        Returns:
            The hint if it is already tracked, otherwise the newly qualifying body

        Raises:
            NoBodiesInFrame: The sensor sees nobody
            NoGestureFound: Nobody untracked performs the activation gesture
        """
        with self.lock:
            if any(t.body_id == hint for t in self._tracked):
                return hint

            snapshot = self.store.snapshot()
            if snapshot.frame.is_empty:
                raise NoBodiesInFrame()

            kept = self.replacement.decide(list(self._tracked), self.capacity)
            kept_ids = {t.body_id for t in kept}
            evicted = [t.body_id for t in self._tracked if t.body_id not in kept_ids]
            self._tracked = list(kept)
            for body_id in evicted:
                self.evictions += 1
                logger.warning(f"Body {body_id} lost its tracking slot")
                if self._eviction_callback:
                    self._eviction_callback(body_id)

            tracked_ids = {t.body_id for t in self._tracked}
            candidates = [b for b in snapshot.frame.bodies if b.body_id not in tracked_ids]
            chosen = self.gesture.decide(candidates, snapshot.window)
            if chosen is None:
                raise NoGestureFound()

            self._tracked.append(TrackedBody(body_id=chosen.body_id, last_active=next(self._clock)))
            self.activations += 1
            logger.info(f"Body {chosen.body_id} activated gesture control")
            return chosen.body_id

    def touch(self, body_id: int) -> None:
        """Mark a tracked body as active (its coordinates were used)."""
        with self.lock:
            for t in self._tracked:
                if t.body_id == body_id:
                    t.last_active = next(self._clock)
                    t.actions += 1
                    return

    def release(self, body_id: int) -> bool:
        """Give up the tracking slot of a body."""
        with self.lock:
            before = len(self._tracked)
            self._tracked = [t for t in self._tracked if t.body_id != body_id]
            return len(self._tracked) != before

    def _on_user_left(self, body_id: int) -> None:
        self.release(body_id)

    def get_status(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "capacity": self.capacity,
                "tracked": [
                    {"body_id": t.body_id, "actions": t.actions, "last_active": t.last_active}
                    for t in self._tracked
                ],
                "activations": self.activations,
                "evictions": self.evictions,
            }

"""
Skeleton frame reception and storage.

Provides functionality to:
- Parse skeleton frames pushed by the motion sensor
- Keep the latest frame plus a short rolling window for temporal filtering
- Detect bodies that left the sensor's view between two frames
- Decouple sensor timing from request handling with a single-slot channel
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Callable, Tuple

logger = logging.getLogger(__name__)

Vector3 = Tuple[float, float, float]

# Joint names used by the pipeline
SHOULDER_LEFT = "shoulder_left"
SHOULDER_RIGHT = "shoulder_right"
ELBOW_LEFT = "elbow_left"
ELBOW_RIGHT = "elbow_right"
WRIST_LEFT = "wrist_left"
WRIST_RIGHT = "wrist_right"
HEAD = "head"

ARM_JOINTS = {
    "left": (SHOULDER_LEFT, WRIST_LEFT),
    "right": (SHOULDER_RIGHT, WRIST_RIGHT),
}


@dataclass(frozen=True)
class Body:
    """A single tracked body: transient sensor id plus joint positions."""
    body_id: int
    joints: Dict[str, Vector3] = field(default_factory=dict)

    def joint(self, name: str) -> Optional[Vector3]:
        return self.joints.get(name)

    def has_joints(self, *names: str) -> bool:
        return all(n in self.joints for n in names)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.body_id,
            "joints": {name: list(pos) for name, pos in self.joints.items()},
        }


@dataclass(frozen=True)
class SkeletonFrame:
    """All bodies visible to the sensor at one instant."""
    bodies: Tuple[Body, ...] = ()
    timestamp: float = 0.0

    @property
    def body_ids(self) -> List[int]:
        return [b.body_id for b in self.bodies]

    @property
    def is_empty(self) -> bool:
        return len(self.bodies) == 0

    def get_body(self, body_id: int) -> Optional[Body]:
        for body in self.bodies:
            if body.body_id == body_id:
                return body
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "bodies": [b.to_dict() for b in self.bodies],
        }

    @classmethod
    def from_dict(cls, msg: Dict[str, Any]) -> "SkeletonFrame":
        """
        Build a frame from a sensor feed message.

        Bodies without a positive id or without any well-formed joint are
        dropped; a message without bodies becomes an empty frame.
        """
        bodies = []
        for entry in msg.get("bodies") or []:
            try:
                body_id = int(entry.get("id", 0))
            except (TypeError, ValueError):
                continue
            if body_id <= 0:
                continue

            joints: Dict[str, Vector3] = {}
            for name, pos in (entry.get("joints") or {}).items():
                try:
                    x, y, z = (float(v) for v in pos)
                except (TypeError, ValueError):
                    continue
                joints[str(name)] = (x, y, z)

            if joints:
                bodies.append(Body(body_id=body_id, joints=joints))

        timestamp = msg.get("timestamp")
        return cls(
            bodies=tuple(bodies),
            timestamp=float(timestamp) if timestamp is not None else time.time()
        )


@dataclass(frozen=True)
class FrameSnapshot:
    """Consistent view of the store taken under its lock."""
    frame: SkeletonFrame
    window: Tuple[SkeletonFrame, ...]


class SkeletonFrameStore:
    """
    Latest skeleton frame plus a bounded rolling window.

    Frames are immutable, so the window holds them directly and readers get
    tuples captured under the lock. The lock is re-entrant and shared with
    the identity tracker.

    Usage:
        store = SkeletonFrameStore(window_size=15)
        store.add_user_left_listener(on_left)
        store.ingest(frame)
        snap = store.snapshot()
    """

    def __init__(self, window_size: int = 15, collect_window: bool = True):
        """
        Initialize the frame store.

        Args:
            window_size: Maximum frames kept in the rolling window
            collect_window: Whether ingested frames are added to the window
        """
        if window_size < 1:
            raise ValueError("window_size must be >= 1")

        self.window_size = window_size
        self.collect_window = collect_window

        self.lock = threading.RLock()
        self._frame = SkeletonFrame()
        self._window: deque = deque(maxlen=window_size)
        self._user_left_listeners: List[Callable[[int], None]] = []

        # Statistics
        self.frames_ingested = 0
        self.frames_skipped = 0
        self.departures = 0

    def add_user_left_listener(self, callback: Callable[[int], None]) -> None:
        """Register a callback invoked with the id of every departed body."""
        with self.lock:
            self._user_left_listeners.append(callback)

    def ingest(self, frame: Optional[SkeletonFrame]) -> List[int]:
        """
        Replace the current frame and emit departures.

        Args:
            frame: New frame from the sensor (None is skipped)

        Returns:
            Ids present in the previous frame and absent from this one
        """
        if frame is None:
            self.frames_skipped += 1
            return []

        with self.lock:
            seen = set(frame.body_ids)
            departed = [bid for bid in self._frame.body_ids if bid not in seen]

            # Listeners run before the overwrite so the last joints stay readable
            for body_id in departed:
                self.departures += 1
                for callback in list(self._user_left_listeners):
                    callback(body_id)

            self._frame = frame
            if self.collect_window and not frame.is_empty:
                self._window.append(frame)
            self.frames_ingested += 1

        return departed

    @property
    def current_frame(self) -> SkeletonFrame:
        with self.lock:
            return self._frame

    @property
    def window(self) -> Tuple[SkeletonFrame, ...]:
        with self.lock:
            return tuple(self._window)

    def snapshot(self) -> FrameSnapshot:
        """Capture the current frame and window together."""
        with self.lock:
            return FrameSnapshot(frame=self._frame, window=tuple(self._window))

    def get_body(self, body_id: int) -> Optional[Body]:
        """Get a body from the current frame."""
        with self.lock:
            return self._frame.get_body(body_id)

    @property
    def body_ids(self) -> List[int]:
        with self.lock:
            return self._frame.body_ids

    def clear_window(self) -> None:
        with self.lock:
            self._window.clear()

    def get_status(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "bodies": self._frame.body_ids,
                "window_frames": len(self._window),
                "window_size": self.window_size,
                "frames_ingested": self.frames_ingested,
                "frames_skipped": self.frames_skipped,
                "departures": self.departures,
            }


class FrameSlot:
    """
    Single-slot channel between the sensor and the store.

    A new frame overwrites one that was not consumed yet; nothing queues up.
    """

    def __init__(self):
        self._frame: Optional[SkeletonFrame] = None
        self._cond = threading.Condition()
        self.dropped = 0

    def put(self, frame: SkeletonFrame) -> bool:
        """
        Offer a frame.

        Returns:
            True if an unconsumed frame was overwritten
        """
        with self._cond:
            overwritten = self._frame is not None
            if overwritten:
                self.dropped += 1
            self._frame = frame
            self._cond.notify()
            return overwritten

    def get(self, timeout: Optional[float] = None) -> Optional[SkeletonFrame]:
        """Take the pending frame, waiting up to timeout seconds."""
        with self._cond:
            if self._frame is None:
                self._cond.wait(timeout=timeout)
            frame, self._frame = self._frame, None
            return frame

    def wake(self) -> None:
        """Release a consumer blocked in get()."""
        with self._cond:
            self._cond.notify_all()


class FrameFeed:
    """
    Background thread moving frames from a FrameSlot into a store.

    Usage:
        feed = FrameFeed(store)
        feed.start()
        feed.slot.put(frame)   # from the sensor callback
        feed.stop()
    """

    def __init__(self, store: SkeletonFrameStore, slot: Optional[FrameSlot] = None, poll_interval: float = 0.5):
        self.store = store
        self.slot = slot or FrameSlot()
        self.poll_interval = poll_interval

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._error_callback: Optional[Callable[[Exception], None]] = None

        self.frames_ingested = 0
        self.errors = 0

    def set_error_callback(self, callback: Callable[[Exception], None]) -> None:
        """Set callback for errors raised while ingesting."""
        self._error_callback = callback

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._feed_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._running = False
        self.slot.wake()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None

    def _feed_loop(self) -> None:
        while self._running:
            frame = self.slot.get(timeout=self.poll_interval)
            if frame is None:
                continue
            try:
                self.store.ingest(frame)
                self.frames_ingested += 1
            except Exception as e:
                self.errors += 1
                logger.error(f"Frame ingestion failed: {e}")
                if self._error_callback:
                    self._error_callback(e)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "frames_ingested": self.frames_ingested,
            "frames_dropped": self.slot.dropped,
            "errors": self.errors,
        }

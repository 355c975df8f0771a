"""
Pointing controller that integrates all components.

Provides the complete processing chain:
- Skeleton frames → Identity tracking → Aim sampling → Classification → Feedback

The controller is the entry point for the (external) request transport:
every command returns a CommandResult instead of raising.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Callable

from .errors import PointingError, FailureReason, NotTracking, BodyNotVisible
from .frames import SkeletonFrame, SkeletonFrameStore, FrameFeed
from .geo import SensorPlacement, RoomGeometry, CoordinateTransformer
from .tracker import IdentityTracker, ArmRaised, GestureFilter, ReplacementStrategy, UNBOUND
from .sampler import AimSampler, FeatureSample
from .classifier import Device, DeviceCatalog, NearestNeighborClassifier
from .session import Session, SessionRegistry
from .metrics import ClassificationMetrics
from .store import SampleStore
from .config import PointingConfig, configure_logging

logger = logging.getLogger(__name__)

USER_LEFT_MESSAGE = "You left the room"
EVICTED_MESSAGE = "Gesture control was handed over to another user"


@dataclass
class DeviceCommand:
    """Command handed to the transmission layer."""
    client_key: str
    device_id: str
    command: str
    value: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class CommandResult:
    """Structured outcome of a controller command."""
    command: str
    success: bool
    reason: Optional[FailureReason] = None
    msg: str = ""
    devices: List[Dict[str, Any]] = field(default_factory=list)
    body_id: Optional[int] = None
    device_id: Optional[str] = None
    sample: Optional[FeatureSample] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command,
            "success": self.success,
            "reason": self.reason.value if self.reason is not None else None,
            "msg": self.msg,
            "devices": self.devices,
            "body_id": self.body_id,
            "device_id": self.device_id,
            "sample": self.sample.to_dict() if self.sample is not None else None,
        }


class PointingController:
    """
    Complete pointing pipeline from skeleton frames to device commands.

    Usage:
        controller = PointingController(room, placement, devices)
        controller.set_dispatch_callback(on_command)
        controller.start()
        controller.deliver(frame)            # from the sensor callback
        controller.register("phone-1")
        controller.activate("phone-1")
        result = controller.select_device("phone-1")
        controller.control_device("phone-1", result.device_id, "toggle")
        controller.stop()
    """

    def __init__(
        self,
        room: RoomGeometry,
        placement: Optional[SensorPlacement] = None,
        devices: Optional[List[Device]] = None,
        capacity: int = 2,
        window_size: int = 15,
        collect_window: bool = True,
        dwell_frames: int = 3,
        windowed_sampling: bool = True,
        arm: str = "auto",
        learn_on_select: bool = True,
        sample_store: Optional[SampleStore] = None,
        gesture: Optional[GestureFilter] = None,
        replacement: Optional[ReplacementStrategy] = None
    ):
        """
        Initialize pointing controller.

        Args:
            room: Room geometry used for aim ray intersection
            placement: Sensor placement in the room
            devices: Initial device catalog
            capacity: Maximum number of concurrently tracked users
            window_size: Frames kept for temporal filtering
            collect_window: Whether frames are collected into the window
            dwell_frames: Frames the activation gesture must be held
            windowed_sampling: Median-filter joints over the window when sampling
            arm: Aiming arm ("auto", "left", "right")
            learn_on_select: Add each classified sample to the training set
            sample_store: Persistent sample log; seeds the training set
            gesture: Activation gesture filter (default: ArmRaised)
            replacement: Tracking slot replacement policy
        """
        self.windowed_sampling = windowed_sampling
        self.learn_on_select = learn_on_select

        # Initialize components
        self.store = SkeletonFrameStore(window_size=window_size, collect_window=collect_window)
        self.transformer = CoordinateTransformer(placement)
        self.tracker = IdentityTracker(
            self.store,
            gesture=gesture or ArmRaised(dwell_frames=dwell_frames, transformer=self.transformer),
            replacement=replacement,
            capacity=capacity,
        )
        self.sampler = AimSampler(self.store, self.transformer, room, tracker=self.tracker, arm=arm)
        self.catalog = DeviceCatalog(devices)
        self.sample_store = sample_store
        training_set = sample_store.load() if sample_store is not None else None
        if training_set is not None:
            for device_id in training_set.device_ids:
                if device_id not in self.catalog:
                    dropped = training_set.clear(device_id)
                    logger.warning(f"Ignoring {dropped} stored samples of unknown device {device_id}")
        self.classifier = NearestNeighborClassifier(self.catalog, training_set=training_set, sink=sample_store)
        self.sessions = SessionRegistry()
        self.metrics = ClassificationMetrics()
        self.feed = FrameFeed(self.store)

        # Runs after the tracker's own user-left listener
        self.store.add_user_left_listener(self._on_user_left)
        self.tracker.set_eviction_callback(self._on_evicted)

        # Callbacks
        self._dispatch_callback: Optional[Callable[[DeviceCommand], None]] = None
        self._error_callback: Optional[Callable[[Exception], None]] = None

        # Statistics
        self.commands_handled = 0
        self.misclassifications = 0
        self.start_time: Optional[float] = None

    @classmethod
    def from_config(cls, config: PointingConfig, sample_store: Optional[SampleStore] = None) -> "PointingController":
        """Build a controller from a PointingConfig and apply its log level."""
        configure_logging(config.log_level)
        if sample_store is None and config.sample_store_path:
            sample_store = SampleStore(config.sample_store_path)
        return cls(
            room=config.room,
            placement=config.placement,
            devices=config.devices,
            capacity=config.capacity,
            window_size=config.window_size,
            collect_window=config.collect_window,
            dwell_frames=config.dwell_frames,
            windowed_sampling=config.windowed_sampling,
            arm=config.arm,
            learn_on_select=config.learn_on_select,
            sample_store=sample_store,
        )

    def set_dispatch_callback(self, callback: Callable[[DeviceCommand], None]) -> None:
        """Set callback receiving device commands for transmission."""
        self._dispatch_callback = callback

    def set_error_callback(self, callback: Callable[[Exception], None]) -> None:
        """Set callback for unexpected errors (dispatch and frame feed)."""
        self._error_callback = callback
        self.feed.set_error_callback(callback)

    @property
    def room(self) -> RoomGeometry:
        return self.sampler.room

    # Frame input

    def ingest(self, frame: Optional[SkeletonFrame]) -> List[int]:
        """Deliver a frame synchronously; returns the ids of departed bodies."""
        return self.store.ingest(frame)

    def deliver(self, frame: SkeletonFrame) -> bool:
        """Deliver a frame through the single-slot channel; True if one was dropped."""
        return self.feed.slot.put(frame)

    def start(self) -> None:
        """Start consuming delivered frames."""
        if self.feed.is_running:
            return
        self.start_time = time.time()
        self.feed.start()

    def stop(self) -> Dict[str, Any]:
        """Stop consuming frames."""
        self.feed.stop()
        return {
            "commands_handled": self.commands_handled,
            "duration_seconds": time.time() - self.start_time if self.start_time else 0,
            "feed": self.feed.stats,
        }

    @property
    def is_running(self) -> bool:
        return self.feed.is_running

    # Commands

    def _execute(self, command: str, handler: Callable[[], CommandResult]) -> CommandResult:
        self.commands_handled += 1
        try:
            return handler()
        except PointingError as e:
            self.metrics.record_failure(e.reason_name)
            logger.debug(f"{command} failed: {e.reason_name}")
            return CommandResult(command=command, success=False, reason=e.reason, msg=e.message)
        except ValueError as e:
            return CommandResult(command=command, success=False, msg=str(e))

    def register(self, client_key: str) -> CommandResult:
        def handler() -> CommandResult:
            self.sessions.add(client_key)
            logger.info(f"Registered client {client_key}")
            return CommandResult(command="register", success=True, devices=self._device_list())
        return self._execute("register", handler)

    def remove(self, client_key: str) -> CommandResult:
        def handler() -> CommandResult:
            with self.sessions.lock:
                session = self.sessions.remove(client_key)
                self._resolve_pending(session, None)
            if session.body_id != UNBOUND:
                self.tracker.release(session.body_id)
            logger.info(f"Removed client {client_key}")
            return CommandResult(command="remove", success=True)
        return self._execute("remove", handler)

    def activate(self, client_key: str) -> CommandResult:
        """Bind the user to the body performing the activation gesture."""
        def handler() -> CommandResult:
            session = self.sessions.require(client_key)
            try:
                body_id = self.tracker.resolve(session.body_id)
            except PointingError as e:
                self.metrics.record_activation(e.reason_name)
                raise
            self.sessions.bind(client_key, body_id)
            self.metrics.record_activation("success")
            logger.info(f"Client {client_key} controls with body {body_id}")
            return CommandResult(command="activate", success=True, body_id=body_id)
        return self._execute("activate", handler)

    def deactivate(self, client_key: str) -> CommandResult:
        def handler() -> CommandResult:
            session = self.sessions.require(client_key)
            body_id = session.body_id
            if body_id != UNBOUND:
                self.tracker.release(body_id)
            with self.sessions.lock:
                self._resolve_pending(session, None)
                session.unbind()
            return CommandResult(command="deactivate", success=True, body_id=body_id)
        return self._execute("deactivate", handler)

    def select_device(self, client_key: str) -> CommandResult:
        """Classify where the user points and arm the result for feedback."""
        return self._execute("select_device", lambda: self._select(client_key, "select_device"))

    def poll_device(self, client_key: str) -> CommandResult:
        return self._execute("poll_device", lambda: self._select(client_key, "poll_device"))

    def _select(self, client_key: str, command: str) -> CommandResult:
        session = self.sessions.require(client_key)
        if not session.tracking:
            raise NotTracking()

        sample = self.sampler.sample(session, windowed=self.windowed_sampling)
        if sample is None:
            raise BodyNotVisible()

        device_id = self.classifier.classify(sample)
        # Must fail before the previous classification is resolved
        self.catalog.require(device_id)
        labeled = sample.with_label(device_id)
        self.metrics.record_classification(device_id)

        with self.sessions.lock:
            self._resolve_pending(session, None)
            contributed = False
            if self.learn_on_select:
                labeled = self.classifier.add_sample(device_id, labeled)
                self.metrics.record_sample(device_id)
                contributed = True
            session.arm(device_id, labeled, contributed)

        logger.info(f"Client {client_key} pointed at {device_id} ({labeled.surface})")
        device = self.catalog.get(device_id)
        return CommandResult(
            command=command,
            success=True,
            msg=device.name if device is not None else device_id,
            body_id=session.body_id,
            device_id=device_id,
            sample=labeled,
        )

    def _resolve_pending(self, session: Session, device_id: Optional[str]) -> Optional[str]:
        """
        Resolve an armed classification. Caller holds the registry lock.

        Returns:
            "confirmed", "corrected" or None if nothing was pending
        """
        if not session.is_armed:
            return None

        predicted = session.last_device_id
        if device_id is not None and device_id == predicted:
            session.disarm(keep_device=True)
            self.metrics.record_confirmation(predicted)
            logger.info(f"Classification of {predicted} confirmed by {session.client_key}")
            return "confirmed"

        if session.sample_contributed and predicted is not None:
            self.classifier.remove_last_sample(predicted)
        session.disarm(keep_device=False)
        self.misclassifications += 1
        self.metrics.record_correction(predicted)
        logger.info(f"Classification of {predicted} corrected by {session.client_key}")
        return "corrected"

    def control_device(
        self,
        client_key: str,
        device_id: str,
        command: str,
        value: Optional[str] = None
    ) -> CommandResult:
        """Send a command to a device; resolves a pending classification first."""
        def handler() -> CommandResult:
            session = self.sessions.require(client_key)
            device = self.catalog.require(device_id)

            with self.sessions.lock:
                outcome = self._resolve_pending(session, device.device_id)

            cmd = DeviceCommand(client_key=client_key, device_id=device.device_id, command=command, value=value)
            if self._dispatch_callback:
                try:
                    self._dispatch_callback(cmd)
                except Exception as e:
                    logger.error(f"Dispatch of {command} to {device.device_id} failed: {e}")
                    if self._error_callback:
                        self._error_callback(e)
                    return CommandResult(
                        command="control_device", success=False, msg=str(e), device_id=device.device_id
                    )

            return CommandResult(
                command="control_device",
                success=True,
                msg=outcome or "",
                device_id=device.device_id,
            )
        return self._execute("control_device", handler)

    def collect_sample(self, client_key: str, device_id: str) -> CommandResult:
        """Calibration: label where the user points now with device_id."""
        def handler() -> CommandResult:
            session = self.sessions.require(client_key)
            self.catalog.require(device_id)
            if not session.tracking:
                raise NotTracking()

            sample = self.sampler.sample(session, windowed=self.windowed_sampling, label=device_id)
            if sample is None:
                raise BodyNotVisible()

            stored = self.classifier.add_sample(device_id, sample)
            self.metrics.record_sample(device_id)
            logger.info(f"Calibration sample for {device_id} on {stored.surface}")
            return CommandResult(
                command="collect_sample", success=True, body_id=session.body_id,
                device_id=device_id, sample=stored,
            )
        return self._execute("collect_sample", handler)

    def add_device(self, device_id: str, name: Optional[str] = None) -> CommandResult:
        def handler() -> CommandResult:
            device = self.catalog.add(device_id, name)
            logger.info(f"Added device {device.device_id} ({device.name})")
            return CommandResult(
                command="add_device", success=True, device_id=device.device_id, devices=self._device_list()
            )
        return self._execute("add_device", handler)

    def delete_device(self, device_id: str) -> CommandResult:
        def handler() -> CommandResult:
            self.catalog.require(device_id)
            self._forget_device_samples(device_id, disarm=True)
            self.catalog.remove(device_id)
            logger.info(f"Deleted device {device_id}")
            return CommandResult(
                command="delete_device", success=True, device_id=device_id, devices=self._device_list()
            )
        return self._execute("delete_device", handler)

    def reset_device(self, device_id: str) -> CommandResult:
        """Drop all training samples of a device."""
        def handler() -> CommandResult:
            self.catalog.require(device_id)
            removed = self._forget_device_samples(device_id, disarm=False)
            logger.info(f"Reset {removed} samples of {device_id}")
            return CommandResult(command="reset_device", success=True, msg=str(removed), device_id=device_id)
        return self._execute("reset_device", handler)

    def _forget_device_samples(self, device_id: str, disarm: bool) -> int:
        with self.sessions.lock:
            removed = self.classifier.reset_device(device_id)
            for session in self.sessions.sessions:
                if session.is_armed and session.last_device_id == device_id:
                    if disarm:
                        session.disarm(keep_device=False)
                    else:
                        session.sample_contributed = False
        return removed

    def list_devices(self) -> CommandResult:
        return self._execute(
            "list_devices", lambda: CommandResult(command="list_devices", success=True, devices=self._device_list())
        )

    def _device_list(self) -> List[Dict[str, Any]]:
        return [
            dict(device.to_dict(), samples=self.classifier.sample_count(device.device_id))
            for device in self.catalog.devices
        ]

    def notifications(self, client_key: str) -> CommandResult:
        """Return and clear unread notifications; never resolves feedback."""
        def handler() -> CommandResult:
            session = self.sessions.require(client_key)
            with self.sessions.lock:
                messages = session.take_notifications()
            return CommandResult(command="notifications", success=True, msg="\n".join(messages))
        return self._execute("notifications", handler)

    def recalibrate(
        self,
        position=None,
        tilt_deg: Optional[float] = None,
        orientation_deg: Optional[float] = None
    ) -> CommandResult:
        """Update the sensor placement."""
        def handler() -> CommandResult:
            changed = self.transformer.recalibrate(position, tilt_deg, orientation_deg)
            return CommandResult(command="recalibrate", success=True, msg="changed" if changed else "unchanged")
        return self._execute("recalibrate", handler)

    def resize_room(self, width: float, height: float, depth: float) -> CommandResult:
        def handler() -> CommandResult:
            room = RoomGeometry(width=width, height=height, depth=depth, surfaces=self.sampler.room.surfaces)
            self.sampler.room = room
            logger.info(f"Room resized to {width} x {height} x {depth}")
            return CommandResult(command="resize_room", success=True)
        return self._execute("resize_room", handler)

    # Sensor events

    def _release_body(self, body_id: int, message: str) -> List[Session]:
        """Correct pending classifications of the body's sessions, then unbind them."""
        with self.sessions.lock:
            for session in self.sessions.get_by_body(body_id):
                self._resolve_pending(session, None)
            return self.sessions.unbind_body(body_id, message)

    def _on_user_left(self, body_id: int) -> None:
        for session in self._release_body(body_id, USER_LEFT_MESSAGE):
            logger.warning(f"Body {body_id} of client {session.client_key} left the room")

    def _on_evicted(self, body_id: int) -> None:
        for session in self._release_body(body_id, EVICTED_MESSAGE):
            logger.warning(f"Client {session.client_key} lost gesture control")

    def get_session(self, client_key: str) -> Optional[Session]:
        return self.sessions.get(client_key)

    def get_status(self) -> Dict[str, Any]:
        """Get current controller status."""
        return {
            "running": self.is_running,
            "commands_handled": self.commands_handled,
            "misclassifications": self.misclassifications,
            "uptime_seconds": time.time() - self.start_time if self.start_time else 0,
            "frames": self.store.get_status(),
            "feed": self.feed.stats,
            "tracking": self.tracker.get_status(),
            "classifier": self.classifier.get_status(),
            "sessions": [s.to_dict() for s in self.sessions.sessions],
            "metrics": self.metrics.get_summary(),
        }

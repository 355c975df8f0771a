"""
Per-user session state.

Each registered client owns a Session holding its tracked body binding and
the pending (armed) classification awaiting feedback.
"""

import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

from .errors import SessionNotFound
from .sampler import FeatureSample
from .tracker import UNBOUND


class SessionState(str, Enum):
    REGISTERED = "registered"
    TRACKING = "tracking"
    ARMED = "armed"


@dataclass
class Session:
    """
    State of one user of the system.

    last_sample is only set while device_id_checked is False, i.e. while a
    classification is waiting for confirmation or correction.
    """
    client_key: str
    body_id: int = UNBOUND
    tracking: bool = False
    last_device_id: Optional[str] = None
    last_sample: Optional[FeatureSample] = None
    device_id_checked: bool = True
    sample_contributed: bool = False
    notifications: List[str] = field(default_factory=list)

    @property
    def state(self) -> SessionState:
        if not self.tracking:
            return SessionState.REGISTERED
        if not self.device_id_checked:
            return SessionState.ARMED
        return SessionState.TRACKING

    @property
    def is_armed(self) -> bool:
        return not self.device_id_checked

    def arm(self, device_id: str, sample: FeatureSample, contributed: bool) -> None:
        self.last_device_id = device_id
        self.last_sample = sample
        self.sample_contributed = contributed
        self.device_id_checked = False

    def disarm(self, keep_device: bool = True) -> None:
        """Resolve the pending classification."""
        if not keep_device:
            self.last_device_id = None
        self.last_sample = None
        self.sample_contributed = False
        self.device_id_checked = True

    def unbind(self) -> None:
        self.body_id = UNBOUND
        self.tracking = False
        self.disarm()

    def notify(self, message: str) -> None:
        self.notifications.append(message)

    def take_notifications(self) -> List[str]:
        messages, self.notifications = self.notifications, []
        return messages

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client": self.client_key,
            "state": self.state.value,
            "body_id": self.body_id,
            "last_device_id": self.last_device_id,
            "pending_notifications": len(self.notifications),
        }


class SessionRegistry:
    """
    Thread-safe map of client key to Session.

    The registry lock is never held while calling into the frame store.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.RLock()

    @property
    def lock(self):
        return self._lock

    def add(self, client_key: str) -> Session:
        """Register a client; registering twice returns the existing session."""
        with self._lock:
            session = self._sessions.get(client_key)
            if session is None:
                session = Session(client_key=client_key)
                self._sessions[client_key] = session
            return session

    def remove(self, client_key: str) -> Session:
        with self._lock:
            session = self._sessions.pop(client_key, None)
        if session is None:
            raise SessionNotFound()
        return session

    def get(self, client_key: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(client_key)

    def require(self, client_key: str) -> Session:
        session = self.get(client_key)
        if session is None:
            raise SessionNotFound()
        return session

    def get_by_body(self, body_id: int) -> List[Session]:
        if body_id == UNBOUND:
            return []
        with self._lock:
            return [s for s in self._sessions.values() if s.body_id == body_id]

    def bind(self, client_key: str, body_id: int) -> Session:
        """Bind a tracked body to a session and start tracking."""
        with self._lock:
            session = self._sessions.get(client_key)
            if session is None:
                raise SessionNotFound()
            session.body_id = body_id
            session.tracking = True
            return session

    def unbind_body(self, body_id: int, message: Optional[str] = None) -> List[Session]:
        """Unbind every session bound to a body, optionally notifying them."""
        with self._lock:
            affected = [s for s in self._sessions.values() if s.body_id == body_id and body_id != UNBOUND]
            for session in affected:
                session.unbind()
                if message:
                    session.notify(message)
            return affected

    @property
    def sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

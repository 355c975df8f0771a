"""
Nearest-neighbour device classification over wall hit points.

Provides:
- DeviceCatalog: known device ids and names
- TrainingSet: per-device, insertion-ordered labeled samples
- NearestNeighborClassifier: 1-NN classify, add and remove-last operations
  with a synchronous persistence hook
"""

import itertools
import logging
import threading
import numpy as np
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Tuple, Protocol
from scipy.spatial.distance import cdist

from .errors import NoTrainingData, NoHit, DeviceNotFound
from .sampler import FeatureSample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Device:
    """A controllable device known to the system."""
    device_id: str
    name: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.device_id, "name": self.name}


class DeviceCatalog:
    """Set of devices with unique ids."""

    def __init__(self, devices: Optional[List[Device]] = None):
        self._devices: Dict[str, Device] = {}
        self._lock = threading.Lock()
        for device in devices or []:
            self.add(device.device_id, device.name)

    def add(self, device_id: str, name: Optional[str] = None) -> Device:
        with self._lock:
            if device_id in self._devices:
                raise ValueError(f"Duplicate device id: {device_id}")
            device = Device(device_id=device_id, name=name or device_id)
            self._devices[device_id] = device
            return device

    def remove(self, device_id: str) -> bool:
        with self._lock:
            return self._devices.pop(device_id, None) is not None

    def get(self, device_id: str) -> Optional[Device]:
        with self._lock:
            return self._devices.get(device_id)

    def require(self, device_id: str) -> Device:
        device = self.get(device_id)
        if device is None:
            raise DeviceNotFound(f"Device not found: {device_id}")
        return device

    def get_by_name(self, name: str) -> Optional[Device]:
        with self._lock:
            for device in self._devices.values():
                if device.name.lower() == name.lower():
                    return device
            return None

    def __contains__(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._devices

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    @property
    def devices(self) -> List[Device]:
        with self._lock:
            return list(self._devices.values())


class TrainingSet:
    """
    Labeled samples per device, in insertion order.

    A global sequence number is kept per sample so ties between devices can
    be broken by insertion order.
    """

    def __init__(self):
        self._samples: Dict[str, List[Tuple[int, FeatureSample]]] = {}
        self._seq = itertools.count()

    def add(self, device_id: str, sample: FeatureSample) -> None:
        self._samples.setdefault(device_id, []).append((next(self._seq), sample))

    def pop_last(self, device_id: str) -> Optional[FeatureSample]:
        entries = self._samples.get(device_id)
        if not entries:
            return None
        _, sample = entries.pop()
        return sample

    def clear(self, device_id: Optional[str] = None) -> int:
        """Drop the samples of one device (or all); returns how many were removed."""
        if device_id is None:
            removed = len(self)
            self._samples.clear()
            return removed
        return len(self._samples.pop(device_id, []))

    def samples(self, device_id: str) -> List[FeatureSample]:
        return [s for _, s in self._samples.get(device_id, [])]

    @property
    def device_ids(self) -> List[str]:
        return [d for d, entries in self._samples.items() if entries]

    def count(self, device_id: str) -> int:
        return len(self._samples.get(device_id, []))

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._samples.values())

    def as_arrays(self) -> Tuple[np.ndarray, List[str]]:
        """
        Get all hit points and labels ordered by insertion.

        Returns:
            Tuple of (Nx3 array of hit points, list of N device ids)
        """
        entries = [
            (seq, device_id, sample)
            for device_id, items in self._samples.items()
            for seq, sample in items
        ]
        entries.sort(key=lambda e: e[0])
        if not entries:
            return np.zeros((0, 3)), []
        points = np.array([e[2].hit_point for e in entries], dtype=np.float64)
        return points, [e[1] for e in entries]


class SampleSink(Protocol):
    """Persistence collaborator notified of every training-set mutation."""

    def record_added(self, device_id: str, sample: FeatureSample) -> None:
        ...

    def record_removed(self, device_id: str, sample: FeatureSample) -> None:
        ...


class NearestNeighborClassifier:
    """
    1-nearest-neighbour classifier over hit points.

    Usage:
        classifier = NearestNeighborClassifier(catalog)
        classifier.add_sample("lamp", sample)
        device_id = classifier.classify(query)
    """

    def __init__(
        self,
        catalog: Optional[DeviceCatalog] = None,
        training_set: Optional[TrainingSet] = None,
        sink: Optional[SampleSink] = None
    ):
        """
        Initialize classifier.

        Args:
            catalog: Devices that labels are validated against (None = accept any)
            training_set: Initial training set, e.g. loaded from a sample store
            sink: Persistence hook called on every mutation
        """
        self.catalog = catalog
        self.training_set = training_set or TrainingSet()
        self.sink = sink
        self._lock = threading.Lock()

        self.classifications = 0

    def set_sink(self, sink: Optional[SampleSink]) -> None:
        self.sink = sink

    def classify(self, sample: FeatureSample) -> str:
        """
        Find the device of the nearest labeled sample.

        Raises:
            NoHit: The sample is the no-hit sentinel
            NoTrainingData: The training set is empty
        """
        return self.nearest(sample)[0]

    def nearest(self, sample: FeatureSample) -> Tuple[str, float]:
        """Like classify, but also returns the distance to the neighbour."""
        if not sample.is_hit:
            raise NoHit()

        with self._lock:
            points, labels = self.training_set.as_arrays()
            if not labels:
                raise NoTrainingData()

            distances = cdist(sample.point.reshape(1, 3), points)[0]
            # argmin returns the first minimum, i.e. the earliest inserted
            idx = int(np.argmin(distances))
            self.classifications += 1
            return labels[idx], float(distances[idx])

    def add_sample(self, device_id: str, sample: FeatureSample) -> FeatureSample:
        """
        Append a labeled sample for a device.

        Returns:
            The stored sample (labeled with device_id)

        Raises:
            DeviceNotFound: device_id is not in the catalog
            NoHit: The sample is the no-hit sentinel
        """
        if self.catalog is not None:
            self.catalog.require(device_id)
        if not sample.is_hit:
            raise NoHit()

        labeled = sample if sample.label == device_id else sample.with_label(device_id)
        with self._lock:
            self.training_set.add(device_id, labeled)
            self._persist("record_added", device_id, labeled)
        return labeled

    def remove_last_sample(self, device_id: str) -> Optional[FeatureSample]:
        """Remove the most recently added sample of a device; no-op if there is none."""
        with self._lock:
            removed = self.training_set.pop_last(device_id)
            if removed is not None:
                self._persist("record_removed", device_id, removed)
            return removed

    def reset_device(self, device_id: str) -> int:
        """Remove every sample of a device."""
        with self._lock:
            removed = []
            while True:
                sample = self.training_set.pop_last(device_id)
                if sample is None:
                    break
                removed.append(sample)
            for sample in removed:
                self._persist("record_removed", device_id, sample)
            return len(removed)

    def sample_count(self, device_id: Optional[str] = None) -> int:
        with self._lock:
            if device_id is None:
                return len(self.training_set)
            return self.training_set.count(device_id)

    def _persist(self, method: str, device_id: str, sample: FeatureSample) -> None:
        if self.sink is None:
            return
        try:
            getattr(self.sink, method)(device_id, sample)
        except Exception as e:
            logger.error(f"Failed to persist sample change for {device_id}: {e}")

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total_samples": len(self.training_set),
                "samples_per_device": {
                    d: self.training_set.count(d) for d in self.training_set.device_ids
                },
                "classifications": self.classifications,
            }

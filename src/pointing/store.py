"""
Calibration sample store.

Provides functionality to:
- Record every training-set mutation (add / remove) to a JSONL log
- Replay the log to seed a TrainingSet at startup
- Validate a sample log for integrity
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from dataclasses import dataclass
from typing import Optional, Dict, Any, List

from .classifier import TrainingSet
from .sampler import FeatureSample


@dataclass
class StoreHeader:
    """Metadata from the sample log header."""
    schema_version: str
    created: str


@dataclass
class SampleEntry:
    """A single add/remove record from the log."""
    action: str
    device_id: str
    timestamp: str
    sample: Optional[FeatureSample]


class SampleStore:
    """
    Append-only JSONL log of calibration samples.

    Writes happen synchronously on the caller's thread so a mutation is on
    disk when the classifier returns.

    Usage:
        store = SampleStore("./calibration/samples.jsonl")
        classifier = NearestNeighborClassifier(catalog, store.load(), sink=store)
    """

    SCHEMA_VERSION = "1.0"

    def __init__(self, path: str):
        """
        Open (or create) a sample log.

        Args:
            path: Path to the JSONL file
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._entry_count = 0

        if not self.path.exists() or self.path.stat().st_size == 0:
            header = {
                "_type": "header",
                "schema_version": self.SCHEMA_VERSION,
                "created": datetime.now().isoformat(),
            }
            with open(self.path, 'w', encoding='utf-8') as f:
                f.write(json.dumps(header) + '\n')

    def record_added(self, device_id: str, sample: FeatureSample) -> None:
        self._write("add", device_id, sample)

    def record_removed(self, device_id: str, sample: FeatureSample) -> None:
        self._write("remove", device_id, sample)

    def _write(self, action: str, device_id: str, sample: FeatureSample) -> None:
        entry = {
            "_type": "sample",
            "action": action,
            "device_id": device_id,
            "timestamp": datetime.now().isoformat(),
            "sample": sample.to_dict(),
        }
        with self._lock:
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(json.dumps(entry) + '\n')
                f.flush()
            self._entry_count += 1

    @property
    def entries_written(self) -> int:
        return self._entry_count

    def load(self) -> TrainingSet:
        """Replay this store into a fresh TrainingSet."""
        return load_training_set(str(self.path))


def read_sample_log(path: str) -> Dict[str, Any]:
    """
    Parse a sample log.

    Args:
        path: Path to the JSONL file

    Returns:
        Dict with "header" (StoreHeader or None) and "entries" (list of SampleEntry)
    """
    header: Optional[StoreHeader] = None
    entries: List[SampleEntry] = []

    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            record = json.loads(line)
            record_type = record.get("_type")

            if record_type == "header":
                header = StoreHeader(
                    schema_version=record.get("schema_version", "unknown"),
                    created=record.get("created", ""),
                )
            elif record_type == "sample":
                data = record.get("sample")
                entries.append(SampleEntry(
                    action=record.get("action", ""),
                    device_id=record.get("device_id", ""),
                    timestamp=record.get("timestamp", ""),
                    sample=FeatureSample.from_dict(data) if data else None,
                ))

    return {"header": header, "entries": entries}


def load_training_set(path: str) -> TrainingSet:
    """
    Rebuild a TrainingSet by replaying add/remove records in order.

    A missing file yields an empty set.
    """
    training_set = TrainingSet()
    if not Path(path).exists():
        return training_set

    for entry in read_sample_log(path)["entries"]:
        if entry.action == "add" and entry.sample is not None and entry.sample.is_hit:
            training_set.add(entry.device_id, entry.sample)
        elif entry.action == "remove":
            training_set.pop_last(entry.device_id)

    return training_set


def validate_sample_log(path: str) -> Dict[str, Any]:
    """
    Validate a sample log for integrity and consistency.

    Args:
        path: Path to the JSONL file

    Returns:
        Validation result dictionary
    """
    result = {
        "valid": True,
        "errors": [],
        "warnings": [],
        "stats": {}
    }

    try:
        parsed = read_sample_log(path)
        header = parsed["header"]
        entries = parsed["entries"]

        if header is None:
            result["errors"].append("Missing header")
            result["valid"] = False
        elif header.schema_version != SampleStore.SCHEMA_VERSION:
            result["warnings"].append(f"Unknown schema version: {header.schema_version}")

        # Removals must never outnumber additions for a device
        counts: Dict[str, int] = {}
        for entry in entries:
            if entry.action == "add":
                counts[entry.device_id] = counts.get(entry.device_id, 0) + 1
            elif entry.action == "remove":
                counts[entry.device_id] = counts.get(entry.device_id, 0) - 1
                if counts[entry.device_id] < 0:
                    result["warnings"].append(f"Device {entry.device_id}: removal without sample")
                    counts[entry.device_id] = 0
            else:
                result["warnings"].append(f"Unknown action: {entry.action!r}")

        result["stats"] = {
            "entries": len(entries),
            "samples_per_device": {d: c for d, c in counts.items() if c > 0},
        }

    except Exception as e:
        result["valid"] = False
        result["errors"].append(str(e))

    return result

"""
Environment configuration: sensor placement, room, devices and tuning.

Configuration files are JSON documents; every field has a default so a
partial file is valid.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List

from .classifier import Device
from .geo import SensorPlacement, RoomGeometry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _default_room() -> RoomGeometry:
    return RoomGeometry(width=4.0, height=2.5, depth=5.0)


@dataclass
class PointingConfig:
    """All settings needed to build a PointingController."""
    placement: SensorPlacement = field(default_factory=SensorPlacement)
    room: RoomGeometry = field(default_factory=_default_room)
    devices: List[Device] = field(default_factory=list)
    capacity: int = 2
    window_size: int = 15
    collect_window: bool = True
    dwell_frames: int = 3
    windowed_sampling: bool = True
    arm: str = "auto"
    learn_on_select: bool = True
    sample_store_path: Optional[str] = None
    log_level: str = "INFO"

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError("capacity must be >= 1")
        if self.window_size < 1:
            raise ValueError("window_size must be >= 1")
        if self.dwell_frames < 1:
            raise ValueError("dwell_frames must be >= 1")
        if self.arm not in ("auto", "left", "right"):
            raise ValueError(f"Unknown arm {self.arm!r}; expected auto, left or right")
        ids = [d.device_id for d in self.devices]
        if len(ids) != len(set(ids)):
            raise ValueError("Device ids must be unique")
        if not isinstance(getattr(logging, str(self.log_level).upper(), None), int):
            raise ValueError(f"Unknown log level: {self.log_level}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "placement": self.placement.to_dict(),
            "room": self.room.to_dict(),
            "devices": [d.to_dict() for d in self.devices],
            "capacity": self.capacity,
            "window_size": self.window_size,
            "collect_window": self.collect_window,
            "dwell_frames": self.dwell_frames,
            "windowed_sampling": self.windowed_sampling,
            "arm": self.arm,
            "learn_on_select": self.learn_on_select,
            "sample_store_path": self.sample_store_path,
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PointingConfig":
        kwargs: Dict[str, Any] = {}
        if "placement" in data:
            kwargs["placement"] = SensorPlacement.from_dict(data["placement"])
        if "room" in data:
            kwargs["room"] = RoomGeometry.from_dict(data["room"])
        if "devices" in data:
            kwargs["devices"] = [
                Device(device_id=str(d["id"]), name=str(d.get("name", d["id"])))
                for d in data["devices"]
            ]
        for key in (
            "capacity", "window_size", "collect_window", "dwell_frames",
            "windowed_sampling", "arm", "learn_on_select", "sample_store_path", "log_level",
        ):
            if key in data:
                kwargs[key] = data[key]
        return cls(**kwargs)


class EnvironmentLoader:
    """
    Load and save PointingConfig JSON files.

    Usage:
        config = EnvironmentLoader.load("./config/environment.json")
        controller = PointingController.from_config(config)
    """

    @staticmethod
    def load(path: str) -> PointingConfig:
        """
        Load configuration from a JSON file.

        Raises:
            FileNotFoundError: The file does not exist
            ValueError: The file contents are invalid
        """
        filepath = Path(path)
        with open(filepath, 'r', encoding='utf-8') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid configuration file {filepath}: {e}") from e

        try:
            config = PointingConfig.from_dict(data)
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid configuration file {filepath}: {e}") from e

        logger.info(f"Loaded configuration from {filepath} ({len(config.devices)} devices)")
        return config

    @staticmethod
    def save(config: PointingConfig, path: str) -> None:
        filepath = Path(path)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(config.to_dict(), f, indent=2)


def configure_logging(level: str = "INFO") -> None:
    """Install a basic stderr handler on the root logger."""
    numeric = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger("pointing").setLevel(numeric)

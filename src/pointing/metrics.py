"""
Metrics module for monitoring classification quality.

Provides functionality to:
- Count classifications, confirmations and corrections per device
- Count activation attempts by outcome
- Estimate online accuracy from user feedback
- Export metrics (JSON, Prometheus format)
"""

import time
from datetime import datetime
from typing import Dict, Any, Optional
from dataclasses import dataclass
import threading
import json


@dataclass
class DeviceMetrics:
    """Per-device counters."""
    device_id: str
    classified: int = 0
    confirmed: int = 0
    corrected: int = 0
    samples_added: int = 0


class ClassificationMetrics:
    """
    Thread-safe metrics collector for the pointing pipeline.

    Usage:
        metrics = ClassificationMetrics()
        metrics.record_classification("lamp")
        metrics.record_confirmation("lamp")
        summary = metrics.get_summary()
    """

    def __init__(self):
        self._devices: Dict[str, DeviceMetrics] = {}
        self._activations: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._start_time = time.time()

        self.classifications = 0
        self.confirmations = 0
        self.corrections = 0
        self.no_hits = 0
        self.failures: Dict[str, int] = {}

    def _device(self, device_id: str) -> DeviceMetrics:
        dev = self._devices.get(device_id)
        if dev is None:
            dev = DeviceMetrics(device_id=device_id)
            self._devices[device_id] = dev
        return dev

    def record_classification(self, device_id: str) -> None:
        with self._lock:
            self.classifications += 1
            self._device(device_id).classified += 1

    def record_confirmation(self, device_id: str) -> None:
        with self._lock:
            self.confirmations += 1
            self._device(device_id).confirmed += 1

    def record_correction(self, predicted: str) -> None:
        """Record a misclassification of `predicted`."""
        with self._lock:
            self.corrections += 1
            self._device(predicted).corrected += 1

    def record_sample(self, device_id: str) -> None:
        with self._lock:
            self._device(device_id).samples_added += 1

    def record_activation(self, outcome: str) -> None:
        """Record an activation attempt ("success" or a failure reason value)."""
        with self._lock:
            self._activations[outcome] = self._activations.get(outcome, 0) + 1

    def record_failure(self, reason: str) -> None:
        with self._lock:
            self.failures[reason] = self.failures.get(reason, 0) + 1
            if reason == "no_hit":
                self.no_hits += 1

    @property
    def accuracy(self) -> Optional[float]:
        """Share of resolved classifications that were confirmed."""
        with self._lock:
            resolved = self.confirmations + self.corrections
            if resolved == 0:
                return None
            return self.confirmations / resolved

    def get_summary(self) -> Dict[str, Any]:
        """
        Get a complete metrics summary.

        Returns:
            Dictionary containing all metrics
        """
        accuracy = self.accuracy
        with self._lock:
            devices = {
                dev_id: {
                    "classified": dev.classified,
                    "confirmed": dev.confirmed,
                    "corrected": dev.corrected,
                    "samples_added": dev.samples_added,
                }
                for dev_id, dev in self._devices.items()
            }

            return {
                "timestamp": datetime.now().isoformat(),
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "classifications": self.classifications,
                "confirmations": self.confirmations,
                "corrections": self.corrections,
                "no_hits": self.no_hits,
                "accuracy": round(accuracy, 4) if accuracy is not None else None,
                "activations": dict(self._activations),
                "failures": dict(self.failures),
                "devices": devices,
            }

    def export_prometheus(self) -> str:
        """
        Export metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        summary = self.get_summary()

        lines = [
            "# HELP pointing_classifications_total Device classifications performed",
            "# TYPE pointing_classifications_total counter",
            f"pointing_classifications_total {summary['classifications']}",
            "",
            "# HELP pointing_confirmations_total Classifications confirmed by the user",
            "# TYPE pointing_confirmations_total counter",
            f"pointing_confirmations_total {summary['confirmations']}",
            "",
            "# HELP pointing_corrections_total Classifications corrected by the user",
            "# TYPE pointing_corrections_total counter",
            f"pointing_corrections_total {summary['corrections']}",
            "",
            "# HELP pointing_no_hits_total Aim rays that hit no surface",
            "# TYPE pointing_no_hits_total counter",
            f"pointing_no_hits_total {summary['no_hits']}",
            "",
            "# HELP pointing_activations_total Gesture activation attempts by outcome",
            "# TYPE pointing_activations_total counter",
        ]

        for outcome, count in summary['activations'].items():
            lines.append(f'pointing_activations_total{{outcome="{outcome}"}} {count}')

        lines.extend([
            "",
            "# HELP pointing_device_classified_total Per-device classifications",
            "# TYPE pointing_device_classified_total counter",
        ])

        for dev_id, dev in summary['devices'].items():
            lines.append(f'pointing_device_classified_total{{device="{dev_id}"}} {dev["classified"]}')

        if summary['accuracy'] is not None:
            lines.extend([
                "",
                "# HELP pointing_accuracy Share of confirmed classifications",
                "# TYPE pointing_accuracy gauge",
                f"pointing_accuracy {summary['accuracy']}",
            ])

        return "\n".join(lines)

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._devices.clear()
            self._activations.clear()
            self.failures.clear()
            self.classifications = 0
            self.confirmations = 0
            self.corrections = 0
            self.no_hits = 0
            self._start_time = time.time()


class MetricsExporter:
    """
    Export metrics to file.
    """

    @staticmethod
    def to_json(metrics: Dict[str, Any], filepath: str) -> None:
        """Write metrics to JSON file."""
        with open(filepath, 'w') as f:
            json.dump(metrics, f, indent=2)

    @staticmethod
    def to_prometheus_file(metrics: ClassificationMetrics, filepath: str) -> None:
        """Write Prometheus-format metrics to file."""
        content = metrics.export_prometheus()
        with open(filepath, 'w') as f:
            f.write(content)

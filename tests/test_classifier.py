import logging
import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from pointing.classifier import Device, DeviceCatalog, NearestNeighborClassifier
from pointing.errors import NoTrainingData, NoHit, DeviceNotFound
from pointing.sampler import FeatureSample


def _hit(x: float, y: float, z: float) -> FeatureSample:
    return FeatureSample(hit_point=(x, y, z))


def _classifier(*device_ids: str, sink=None) -> NearestNeighborClassifier:
    catalog = DeviceCatalog([Device(d, d.title()) for d in device_ids])
    return NearestNeighborClassifier(catalog, sink=sink)


class _RecordingSink:
    def __init__(self):
        self.events = []

    def record_added(self, device_id, sample):
        self.events.append(("add", device_id))

    def record_removed(self, device_id, sample):
        self.events.append(("remove", device_id))


class _FailingSink:
    def record_added(self, device_id, sample):
        raise OSError("disk full")

    def record_removed(self, device_id, sample):
        raise OSError("disk full")


def test_empty_training_set() -> None:
    classifier = _classifier("lamp")
    with pytest.raises(NoTrainingData):
        classifier.classify(_hit(0.0, 1.0, 1.0))


def test_no_hit_is_rejected() -> None:
    classifier = _classifier("lamp")
    classifier.add_sample("lamp", _hit(0.0, 1.0, 1.0))

    with pytest.raises(NoHit):
        classifier.classify(FeatureSample.no_hit())
    with pytest.raises(NoHit):
        classifier.add_sample("lamp", FeatureSample.no_hit())


def test_single_sample_classifies_everything() -> None:
    classifier = _classifier("lamp", "tv")
    classifier.add_sample("lamp", _hit(0.0, 1.5, 1.5))

    for point in [(0.0, 0.2, 4.0), (4.0, 2.0, 0.5), (2.0, 0.0, 2.5)]:
        assert classifier.classify(_hit(*point)) == "lamp"


def test_nearest_neighbour() -> None:
    classifier = _classifier("lamp", "tv")
    classifier.add_sample("lamp", _hit(0.0, 1.5, 1.5))
    classifier.add_sample("tv", _hit(2.0, 1.2, 5.0))

    assert classifier.classify(_hit(0.0, 1.4, 1.8)) == "lamp"
    label, distance = classifier.nearest(_hit(2.0, 1.2, 4.0))
    assert label == "tv"
    assert distance == pytest.approx(1.0)


def test_tie_goes_to_earliest_sample() -> None:
    classifier = _classifier("lamp", "tv")
    classifier.add_sample("tv", _hit(0.0, -1.0, 0.0))
    classifier.add_sample("lamp", _hit(0.0, 1.0, 0.0))

    assert classifier.classify(_hit(0.0, 0.0, 0.0)) == "tv"


def test_add_sample_labels_and_validates_device() -> None:
    classifier = _classifier("lamp")

    stored = classifier.add_sample("lamp", _hit(0.0, 1.0, 1.0))
    assert stored.label == "lamp"

    with pytest.raises(DeviceNotFound):
        classifier.add_sample("radio", _hit(0.0, 1.0, 1.0))


def test_remove_last_sample_is_safe_on_empty() -> None:
    classifier = _classifier("lamp")
    first = classifier.add_sample("lamp", _hit(0.0, 1.0, 1.0))
    second = classifier.add_sample("lamp", _hit(0.0, 2.0, 1.0))

    assert classifier.remove_last_sample("lamp") == second
    assert classifier.remove_last_sample("lamp") == first
    assert classifier.remove_last_sample("lamp") is None
    assert classifier.remove_last_sample("lamp") is None
    assert classifier.sample_count("lamp") == 0


def test_reset_device() -> None:
    sink = _RecordingSink()
    classifier = _classifier("lamp", "tv", sink=sink)
    classifier.add_sample("lamp", _hit(0.0, 1.0, 1.0))
    classifier.add_sample("lamp", _hit(0.0, 2.0, 1.0))
    classifier.add_sample("tv", _hit(2.0, 1.0, 5.0))

    assert classifier.reset_device("lamp") == 2
    assert classifier.sample_count() == 1
    assert sink.events[-2:] == [("remove", "lamp"), ("remove", "lamp")]


def test_sink_failure_is_logged(caplog) -> None:
    classifier = _classifier("lamp", sink=_FailingSink())

    with caplog.at_level(logging.ERROR):
        classifier.add_sample("lamp", _hit(0.0, 1.0, 1.0))

    assert classifier.sample_count("lamp") == 1
    assert "disk full" in caplog.text


def test_catalog() -> None:
    catalog = DeviceCatalog([Device("lamp", "Desk Lamp")])

    assert "lamp" in catalog
    assert catalog.get_by_name("desk lamp").device_id == "lamp"
    with pytest.raises(ValueError):
        catalog.add("lamp")
    assert catalog.remove("lamp") is True
    assert len(catalog) == 0

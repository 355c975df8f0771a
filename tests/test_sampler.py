import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from pointing.frames import Body, SkeletonFrame, SkeletonFrameStore
from pointing.geo import CoordinateTransformer, RoomGeometry
from pointing.sampler import AimSampler, FeatureSample
from pointing.session import Session
from pointing.tracker import IdentityTracker


ROOM = RoomGeometry(width=4.0, height=2.5, depth=5.0)


def _pointing_left(body_id: int = 1, wrist=(1.6, 1.4, 2.5)) -> Body:
    """Right arm stretched towards the left wall, left arm hanging."""
    return Body(body_id=body_id, joints={
        "shoulder_left": (1.8, 1.4, 2.5),
        "shoulder_right": (2.2, 1.4, 2.5),
        "wrist_left": (1.8, 0.9, 2.5),
        "wrist_right": wrist,
    })


def _sampler(store: SkeletonFrameStore, **kwargs) -> AimSampler:
    return AimSampler(store, CoordinateTransformer(), ROOM, **kwargs)


def test_sample_hits_left_wall() -> None:
    store = SkeletonFrameStore()
    store.ingest(SkeletonFrame(bodies=(_pointing_left(),)))

    sample = _sampler(store).sample(Session("alice", body_id=1))

    assert sample.is_hit
    assert sample.surface == "left"
    assert sample.hit_point == pytest.approx((0.0, 1.4, 2.5))
    assert sample.direction == pytest.approx((-1.0, 0.0, 0.0))
    assert sample.label is None


def test_unbound_or_missing_body() -> None:
    store = SkeletonFrameStore()
    store.ingest(SkeletonFrame(bodies=(_pointing_left(),)))
    sampler = _sampler(store)

    assert sampler.sample(Session("alice")) is None
    assert sampler.sample(Session("alice", body_id=9)) is None


def test_pointing_straight_up_is_no_hit() -> None:
    store = SkeletonFrameStore()
    store.ingest(SkeletonFrame(bodies=(_pointing_left(wrist=(2.2, 2.0, 2.5)),)))

    sample = _sampler(store).sample(Session("alice", body_id=1))

    assert sample is not None
    assert not sample.is_hit
    assert sample.direction == pytest.approx((0.0, 1.0, 0.0))


def test_window_median_suppresses_outlier() -> None:
    store = SkeletonFrameStore()
    store.ingest(SkeletonFrame(bodies=(_pointing_left(),)))
    store.ingest(SkeletonFrame(bodies=(_pointing_left(),)))
    store.ingest(SkeletonFrame(bodies=(_pointing_left(wrist=(1.6, 2.4, 2.5)),)))
    sampler = _sampler(store)
    session = Session("alice", body_id=1)

    filtered = sampler.sample(session, windowed=True)
    latest = sampler.sample(session, windowed=False)

    assert filtered.hit_point == pytest.approx((0.0, 1.4, 2.5))
    assert not latest.is_hit


def test_short_window_uses_latest_frame() -> None:
    store = SkeletonFrameStore()
    store.ingest(SkeletonFrame(bodies=(_pointing_left(),)))
    store.ingest(SkeletonFrame(bodies=(_pointing_left(wrist=(1.6, 1.2, 2.5)),)))

    sample = _sampler(store).sample(Session("alice", body_id=1))

    # Latest frame aims downwards: 0.2 m drop over 0.6 m, continued for 1.6 m
    assert sample.hit_point == pytest.approx((0.0, 1.2 - 0.2 * 1.6 / 0.6, 2.5))


def test_forced_arm() -> None:
    store = SkeletonFrameStore()
    store.ingest(SkeletonFrame(bodies=(_pointing_left(),)))

    sample = _sampler(store, arm="left").sample(Session("alice", body_id=1))

    assert sample.surface == "floor"
    assert sample.hit_point == pytest.approx((1.8, 0.0, 2.5))

    with pytest.raises(ValueError):
        _sampler(store, arm="both")


def test_sampling_marks_tracker_activity() -> None:
    store = SkeletonFrameStore()
    tracker = IdentityTracker(store)
    raised = Body(body_id=1, joints={"shoulder_right": (2.2, 1.4, 2.5), "wrist_right": (2.2, 1.9, 2.5)})
    for _ in range(3):
        store.ingest(SkeletonFrame(bodies=(raised,)))
    tracker.resolve()

    store.ingest(SkeletonFrame(bodies=(_pointing_left(),)))
    _sampler(store, tracker=tracker).sample(Session("alice", body_id=1), windowed=False, label="lamp")

    assert tracker.get_status()["tracked"][0]["actions"] == 1


def test_feature_sample_dict_round_trip() -> None:
    sample = FeatureSample(hit_point=(0.0, 1.4, 2.5), label="lamp", surface="left", direction=(-1.0, 0.0, 0.0))
    assert FeatureSample.from_dict(sample.to_dict()) == sample

    miss = FeatureSample.no_hit()
    assert FeatureSample.from_dict(miss.to_dict()) == miss
    with pytest.raises(ValueError):
        miss.point

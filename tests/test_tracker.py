import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from pointing.errors import NoBodiesInFrame, NoGestureFound
from pointing.frames import Body, SkeletonFrame, SkeletonFrameStore
from pointing.tracker import IdentityTracker, ArmRaised, LeastRecentlyActive, TrackedBody


def _person(body_id: int, x: float = 2.0, raised: float = 0.0) -> Body:
    """Body with the right wrist `raised` meters above the shoulder (idle when 0)."""
    right_wrist_y = 1.4 + raised if raised else 0.9
    return Body(body_id=body_id, joints={
        "shoulder_left": (x - 0.2, 1.4, 2.0),
        "shoulder_right": (x + 0.2, 1.4, 2.0),
        "wrist_left": (x - 0.2, 0.9, 2.0),
        "wrist_right": (x + 0.2, right_wrist_y, 2.0),
    })


def _ingest(store: SkeletonFrameStore, *bodies: Body, times: int = 1) -> None:
    for _ in range(times):
        store.ingest(SkeletonFrame(bodies=tuple(bodies)))


def test_resolve_without_bodies() -> None:
    store = SkeletonFrameStore()
    tracker = IdentityTracker(store)

    with pytest.raises(NoBodiesInFrame):
        tracker.resolve()


def test_resolve_without_gesture() -> None:
    store = SkeletonFrameStore()
    tracker = IdentityTracker(store)
    _ingest(store, _person(1), times=5)

    with pytest.raises(NoGestureFound):
        tracker.resolve()


def test_gesture_must_be_held_for_dwell() -> None:
    store = SkeletonFrameStore()
    tracker = IdentityTracker(store, gesture=ArmRaised(dwell_frames=3))
    _ingest(store, _person(1))
    _ingest(store, _person(1, raised=0.5), times=2)

    with pytest.raises(NoGestureFound):
        tracker.resolve()

    _ingest(store, _person(1, raised=0.5))
    assert tracker.resolve() == 1


def test_resolve_is_idempotent() -> None:
    store = SkeletonFrameStore()
    tracker = IdentityTracker(store)
    _ingest(store, _person(4, raised=0.5), times=3)

    first = tracker.resolve()
    second = tracker.resolve(first)

    assert first == second == 4
    assert tracker.tracked_ids == [4]
    assert tracker.activations == 1


def test_highest_wrist_wins() -> None:
    store = SkeletonFrameStore()
    tracker = IdentityTracker(store)
    _ingest(store, _person(1, x=1.0, raised=0.2), _person(2, x=3.0, raised=0.6), times=3)

    assert tracker.resolve() == 2


def test_tracked_bodies_are_not_candidates() -> None:
    store = SkeletonFrameStore()
    tracker = IdentityTracker(store, capacity=2)
    _ingest(store, _person(1, raised=0.5), times=3)
    assert tracker.resolve() == 1

    with pytest.raises(NoGestureFound):
        tracker.resolve()


def test_eviction_when_full() -> None:
    store = SkeletonFrameStore()
    tracker = IdentityTracker(store, capacity=1)
    evicted = []
    tracker.set_eviction_callback(evicted.append)

    _ingest(store, _person(1, raised=0.5), times=3)
    assert tracker.resolve() == 1

    _ingest(store, _person(1, x=1.0), _person(2, x=3.0, raised=0.5), times=3)
    assert tracker.resolve() == 2

    assert evicted == [1]
    assert tracker.tracked_ids == [2]
    assert tracker.evictions == 1


def test_user_left_releases_slot() -> None:
    store = SkeletonFrameStore()
    tracker = IdentityTracker(store)
    _ingest(store, _person(1, raised=0.5), times=3)
    tracker.resolve()

    store.ingest(SkeletonFrame())

    assert not tracker.is_tracked(1)


def test_release_and_touch() -> None:
    store = SkeletonFrameStore()
    tracker = IdentityTracker(store)
    _ingest(store, _person(1, raised=0.5), times=3)
    tracker.resolve()

    tracker.touch(1)
    assert tracker.get_status()["tracked"][0]["actions"] == 1
    assert tracker.release(1) is True
    assert tracker.release(1) is False


def test_least_recently_active_keeps_newest() -> None:
    policy = LeastRecentlyActive()
    tracked = [TrackedBody(1, last_active=5), TrackedBody(2, last_active=9), TrackedBody(3, last_active=2)]

    kept = policy.decide(tracked, capacity=3)
    assert [t.body_id for t in kept] == [1, 2]

    assert policy.decide(tracked[:1], capacity=3) == tracked[:1]


def test_without_window_current_frame_decides() -> None:
    store = SkeletonFrameStore(collect_window=False)
    tracker = IdentityTracker(store, gesture=ArmRaised(dwell_frames=5))
    _ingest(store, _person(1, raised=0.5))

    assert tracker.resolve() == 1

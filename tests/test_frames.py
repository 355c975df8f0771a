import os
import sys
import time

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from pointing.frames import Body, SkeletonFrame, SkeletonFrameStore, FrameSlot, FrameFeed


def _body(body_id: int, y: float = 1.0) -> Body:
    return Body(body_id=body_id, joints={"head": (0.0, y, 2.0)})


def _frame(*ids: int) -> SkeletonFrame:
    return SkeletonFrame(bodies=tuple(_body(i) for i in ids))


def test_from_dict_drops_untracked_and_malformed_bodies() -> None:
    msg = {
        "timestamp": 12.5,
        "bodies": [
            {"id": 0, "joints": {"head": [0, 1, 2]}},
            {"id": 3, "joints": {"head": [0, 1, 2], "wrist_left": [1, "x", 2]}},
            {"id": 4, "joints": {"head": [1, 2]}},
        ],
    }
    frame = SkeletonFrame.from_dict(msg)

    assert frame.timestamp == 12.5
    assert frame.body_ids == [3]
    assert frame.get_body(3).joints == {"head": (0.0, 1.0, 2.0)}


def test_from_dict_without_bodies_is_empty() -> None:
    frame = SkeletonFrame.from_dict({"timestamp": 1.0})
    assert frame.is_empty


def test_departure_notified_once_before_overwrite() -> None:
    store = SkeletonFrameStore(window_size=5)
    seen = []

    def on_left(body_id: int) -> None:
        # The departing body is still readable from the store
        seen.append((body_id, store.get_body(body_id) is not None))

    store.add_user_left_listener(on_left)

    store.ingest(_frame(1, 2))
    departed = store.ingest(_frame(2))
    store.ingest(_frame(2))

    assert departed == [1]
    assert seen == [(1, True)]
    assert store.departures == 1


def test_none_frame_is_skipped() -> None:
    store = SkeletonFrameStore()
    store.ingest(_frame(1))

    assert store.ingest(None) == []
    assert store.body_ids == [1]
    assert store.frames_skipped == 1


def test_empty_frame_departs_everyone_but_is_not_windowed() -> None:
    store = SkeletonFrameStore(window_size=5)
    store.ingest(_frame(1))
    store.ingest(_frame(1))

    departed = store.ingest(SkeletonFrame())

    assert departed == [1]
    assert store.current_frame.is_empty
    assert len(store.window) == 2


def test_window_is_bounded_and_optional() -> None:
    store = SkeletonFrameStore(window_size=3)
    for _ in range(10):
        store.ingest(_frame(1))
    assert len(store.window) == 3

    no_window = SkeletonFrameStore(window_size=3, collect_window=False)
    no_window.ingest(_frame(1))
    assert no_window.window == ()
    assert no_window.snapshot().frame.body_ids == [1]


def test_frame_slot_overwrites_unconsumed_frame() -> None:
    slot = FrameSlot()

    assert slot.put(_frame(1)) is False
    assert slot.put(_frame(2)) is True
    assert slot.dropped == 1
    assert slot.get(timeout=0.1).body_ids == [2]
    assert slot.get(timeout=0.01) is None


def test_frame_feed_moves_frames_into_store() -> None:
    store = SkeletonFrameStore()
    feed = FrameFeed(store, poll_interval=0.05)
    feed.start()
    try:
        feed.slot.put(_frame(7))
        deadline = time.time() + 2.0
        while time.time() < deadline and store.body_ids != [7]:
            time.sleep(0.01)
    finally:
        feed.stop()

    assert store.body_ids == [7]
    assert feed.stats["frames_ingested"] == 1
    assert not feed.is_running


def test_invalid_window_size() -> None:
    with pytest.raises(ValueError):
        SkeletonFrameStore(window_size=0)

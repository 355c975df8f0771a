import os
import sys

import numpy as np
import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from pointing.geo import SensorPlacement, RoomGeometry, CoordinateTransformer


def test_sensor_position_maps_to_origin() -> None:
    placement = SensorPlacement(position=[2.0, 0.8, 0.3], tilt_deg=-12.0, orientation_deg=30.0)
    transformer = CoordinateTransformer(placement)

    out = transformer.transform(placement.position)

    assert out.shape == (1, 3)
    assert np.allclose(out[0], 0.0)


def test_orientation_rotates_about_vertical_axis() -> None:
    transformer = CoordinateTransformer(SensorPlacement(orientation_deg=90.0))

    out = transformer.transform([0.0, 0.0, 1.0])[0]

    assert np.allclose(out, [1.0, 0.0, 0.0])


def test_to_sensor_inverts_transform() -> None:
    transformer = CoordinateTransformer(SensorPlacement([1.0, 0.5, -0.2], tilt_deg=-8.0, orientation_deg=20.0))
    pts = np.array([[0.1, 1.2, 2.5], [1.0, 0.0, 3.0]])

    back = transformer.transform(transformer.to_sensor(pts))

    assert np.allclose(back, pts)


def test_rotation_matrix_is_cached() -> None:
    transformer = CoordinateTransformer(SensorPlacement(tilt_deg=-10.0))
    for _ in range(5):
        transformer.transform(np.zeros((4, 3)))
    assert transformer.matrix_builds == 1

    # Moving the sensor does not rebuild the rotation
    assert transformer.recalibrate(position=[1.0, 1.0, 0.0]) is True
    assert transformer.matrix_builds == 1

    assert transformer.recalibrate(tilt_deg=-10.0) is False
    assert transformer.matrix_builds == 1

    assert transformer.recalibrate(tilt_deg=-15.0) is True
    assert transformer.matrix_builds == 2
    assert transformer.placement.tilt_deg == -15.0


def test_transform_empty_input() -> None:
    transformer = CoordinateTransformer()
    assert transformer.transform([]).shape == (0, 3)
    assert transformer.transform_joints({}) == {}


def test_intersect_nearest_wall() -> None:
    room = RoomGeometry(width=4.0, height=2.5, depth=5.0)

    point, surface = room.intersect([2.0, 1.5, 2.5], [-1.0, 0.0, 0.0])
    assert surface == "left"
    assert np.allclose(point, [0.0, 1.5, 2.5])

    point, surface = room.intersect([2.0, 1.5, 2.5], [0.0, -1.0, 0.0])
    assert surface == "floor"
    assert np.allclose(point, [2.0, 0.0, 2.5])

    point, surface = room.intersect([2.0, 1.5, 2.5], [1.0, 0.0, 1.0])
    assert surface == "right"
    assert np.allclose(point, [4.0, 1.5, 4.5])


def test_intersect_straight_up_misses_without_ceiling() -> None:
    room = RoomGeometry(width=4.0, height=2.5, depth=5.0)
    assert room.intersect([2.0, 1.5, 2.5], [0.0, 1.0, 0.0]) is None

    with_ceiling = RoomGeometry(width=4.0, height=2.5, depth=5.0, surfaces=("left", "ceiling"))
    point, surface = with_ceiling.intersect([2.0, 1.5, 2.5], [0.0, 1.0, 0.0])
    assert surface == "ceiling"
    assert np.allclose(point, [2.0, 2.5, 2.5])


def test_intersect_ray_leaving_room_above_walls() -> None:
    room = RoomGeometry(width=4.0, height=2.5, depth=5.0)
    assert room.intersect([2.0, 2.0, 2.5], [-0.5, 1.0, 0.0]) is None


def test_invalid_room() -> None:
    with pytest.raises(ValueError):
        RoomGeometry(width=0.0, height=2.5, depth=5.0)
    with pytest.raises(ValueError):
        RoomGeometry(width=4.0, height=2.5, depth=5.0, surfaces=("roof",))


def test_room_dict_round_trip() -> None:
    room = RoomGeometry(width=4.0, height=2.5, depth=5.0)
    assert RoomGeometry.from_dict(room.to_dict()) == room

"""Simulation utilities for synthetic skeleton frames.

This module also provides a small closed-loop simulation runner so the
pointing pipeline can be exercised deterministically without a sensor.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
import argparse
import json
import sys

import numpy as np

from pointing.classifier import Device
from pointing.controller import PointingController
from pointing.frames import (
    Body, SkeletonFrame,
    SHOULDER_LEFT, SHOULDER_RIGHT, ELBOW_LEFT, ELBOW_RIGHT, WRIST_LEFT, WRIST_RIGHT, HEAD,
)
from pointing.geo import CoordinateTransformer, RoomGeometry, SensorPlacement
from pointing.store import SampleStore, validate_sample_log


SHOULDER_HEIGHT = 1.45
SHOULDER_HALF_WIDTH = 0.2
HEAD_HEIGHT = 1.7
ARM_REACH = 0.6

# Device positions (room space) on the default 4 x 2.5 x 5 room
DEFAULT_DEVICES = {
    "lamp": (0.0, 1.5, 1.5),
    "tv": (2.0, 1.2, 5.0),
    "fan": (4.0, 1.1, 3.0),
    "blinds": (0.0, 1.8, 4.0),
}


def _sample_gaussian_joint_noise(rng: np.random.Generator, noise_m: float) -> np.ndarray:
    if noise_m <= 0.0:
        return np.zeros(3)
    return rng.normal(0.0, noise_m, size=3)


class SimulatedPerson:
    """Room-space poses of a person standing at a floor position (x, z)."""

    def __init__(self, x: float, z: float):
        self.x = float(x)
        self.z = float(z)

    def _shoulder(self, side: str) -> np.ndarray:
        dx = -SHOULDER_HALF_WIDTH if side == "left" else SHOULDER_HALF_WIDTH
        return np.array([self.x + dx, SHOULDER_HEIGHT, self.z], dtype=np.float64)

    def _pose(self, right_wrist: np.ndarray | None = None, left_wrist: np.ndarray | None = None) -> dict[str, np.ndarray]:
        sl = self._shoulder("left")
        sr = self._shoulder("right")
        hang = np.array([0.0, -0.55, 0.05])
        wl = sl + hang if left_wrist is None else left_wrist
        wr = sr + hang if right_wrist is None else right_wrist
        return {
            HEAD: np.array([self.x, HEAD_HEIGHT, self.z]),
            SHOULDER_LEFT: sl,
            SHOULDER_RIGHT: sr,
            ELBOW_LEFT: (sl + wl) / 2.0,
            ELBOW_RIGHT: (sr + wr) / 2.0,
            WRIST_LEFT: wl,
            WRIST_RIGHT: wr,
        }

    def idle(self) -> dict[str, np.ndarray]:
        return self._pose()

    def arm_raised(self, side: str = "right") -> dict[str, np.ndarray]:
        wrist = self._shoulder(side) + np.array([0.0, 0.5, 0.1])
        if side == "left":
            return self._pose(left_wrist=wrist)
        return self._pose(right_wrist=wrist)

    def pointing_at(self, target, side: str = "right") -> dict[str, np.ndarray]:
        shoulder = self._shoulder(side)
        direction = np.asarray(target, dtype=np.float64) - shoulder
        wrist = shoulder + ARM_REACH * direction / np.linalg.norm(direction)
        if side == "left":
            return self._pose(left_wrist=wrist)
        return self._pose(right_wrist=wrist)

    def pointing_up(self, side: str = "right") -> dict[str, np.ndarray]:
        wrist = self._shoulder(side) + np.array([0.0, ARM_REACH, 0.0])
        if side == "left":
            return self._pose(left_wrist=wrist)
        return self._pose(right_wrist=wrist)


class SkeletonSimulator:
    """Turn room-space poses into sensor-space SkeletonFrames."""

    def __init__(
        self,
        placement: SensorPlacement | None = None,
        noise_m: float = 0.0,
        seed: int = 0,
        fps: float = 30.0,
    ):
        if fps <= 0.0:
            raise ValueError("fps must be > 0")
        if noise_m < 0.0:
            raise ValueError("noise_m must be >= 0")

        self._transformer = CoordinateTransformer(placement)
        self._rng = np.random.default_rng(int(seed))
        self._noise_m = float(noise_m)
        self._dt = 1.0 / float(fps)
        self._frame_index = 0

    def frame(self, poses: dict[int, dict[str, np.ndarray]]) -> SkeletonFrame:
        """Build the next frame from body id -> room-space joints."""
        bodies = []
        for body_id, joints in sorted(poses.items()):
            names = list(joints.keys())
            sensor = self._transformer.to_sensor([joints[n] for n in names])
            converted = {}
            for i, name in enumerate(names):
                p = sensor[i] + _sample_gaussian_joint_noise(self._rng, self._noise_m)
                converted[name] = (float(p[0]), float(p[1]), float(p[2]))
            bodies.append(Body(body_id=int(body_id), joints=converted))

        frame = SkeletonFrame(bodies=tuple(bodies), timestamp=self._frame_index * self._dt)
        self._frame_index += 1
        return frame

    def frames(self, poses: dict[int, dict[str, np.ndarray]], count: int) -> list[SkeletonFrame]:
        return [self.frame(poses) for _ in range(int(count))]


def _feed(controller: PointingController, frames: list[SkeletonFrame]) -> None:
    for frame in frames:
        controller.ingest(frame)


def run_closed_loop(
    *,
    trials: int,
    noise_m: float = 0.0,
    calibration_samples: int = 3,
    seed: int = 0,
    out_dir: str | None = None,
) -> dict:
    """Run an in-process closed-loop simulation of calibration and use.

    A simulated user activates control, calibrates every device by pointing
    at it, then repeatedly points at random devices. Each classification is
    confirmed when correct and corrected otherwise.

    Returns a summary dict with keys:
      accuracy, classifications, confirmations, corrections, no_hits, sample_log, eval_json
    """
    if trials <= 0:
        raise ValueError("trials must be > 0")
    if calibration_samples <= 0:
        raise ValueError("calibration_samples must be > 0")

    rng = np.random.default_rng(int(seed))

    if out_dir is None:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        out_path = Path("./output/sim") / f"{ts}-{seed}"
    else:
        out_path = Path(out_dir)
    out_path.mkdir(parents=True, exist_ok=True)

    sample_log = out_path / "samples.jsonl"
    store = SampleStore(str(sample_log))

    room = RoomGeometry(width=4.0, height=2.5, depth=5.0)
    placement = SensorPlacement(position=[2.0, 0.8, 0.0], tilt_deg=-10.0, orientation_deg=5.0)
    devices = [Device(device_id=d, name=d) for d in DEFAULT_DEVICES]
    controller = PointingController(room, placement, devices, sample_store=store)
    window = controller.store.window_size

    sim = SkeletonSimulator(placement, noise_m=noise_m, seed=seed)
    body_id = 1
    client = "sim-user"

    def person() -> SimulatedPerson:
        return SimulatedPerson(
            x=2.0 + float(rng.uniform(-0.4, 0.4)),
            z=2.5 + float(rng.uniform(-0.4, 0.4)),
        )

    controller.register(client)
    _feed(controller, sim.frames({body_id: person().arm_raised()}, window))
    activation = controller.activate(client)
    if not activation.success:
        raise RuntimeError(f"activation failed: {activation.msg}")

    for device_id, target in DEFAULT_DEVICES.items():
        for _ in range(int(calibration_samples)):
            _feed(controller, sim.frames({body_id: person().pointing_at(target)}, window))
            controller.collect_sample(client, device_id)

    device_ids = list(DEFAULT_DEVICES)
    for _ in range(int(trials)):
        actual = device_ids[int(rng.integers(len(device_ids)))]
        _feed(controller, sim.frames({body_id: person().pointing_at(DEFAULT_DEVICES[actual])}, window))
        result = controller.select_device(client)
        if result.success:
            controller.control_device(client, actual, "toggle")

    summary = controller.metrics.get_summary()
    validation = validate_sample_log(str(sample_log))

    eval_path = out_path / "eval.json"
    eval_summary = {
        "accuracy": summary["accuracy"],
        "classifications": summary["classifications"],
        "confirmations": summary["confirmations"],
        "corrections": summary["corrections"],
        "no_hits": summary["no_hits"],
        "samples": controller.classifier.sample_count(),
        "sample_log_valid": validation["valid"],
        "params": {
            "trials": int(trials),
            "noise_m": float(noise_m),
            "calibration_samples": int(calibration_samples),
            "seed": int(seed),
        },
    }
    eval_path.write_text(json.dumps(eval_summary, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    return {
        "accuracy": summary["accuracy"],
        "classifications": summary["classifications"],
        "confirmations": summary["confirmations"],
        "corrections": summary["corrections"],
        "no_hits": summary["no_hits"],
        "sample_log": str(sample_log),
        "eval_json": str(eval_path),
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="pointing-sim")
    parser.add_argument("--trials", type=int, default=50, help="Number of pointing trials (>0)")
    parser.add_argument("--noise", type=float, default=0.0, help="Joint noise stddev in meters")
    parser.add_argument("--calibration-samples", type=int, default=3, help="Samples per device (>0)")
    parser.add_argument("--seed", type=int, default=0, help="RNG seed")
    parser.add_argument("--out-dir", type=str, default=None, help="Output directory")

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        try:
            return int(e.code)
        except Exception:
            return 2

    def _err(msg: str) -> int:
        print(f"error: {msg}", file=sys.stderr)
        return 2

    if args.trials <= 0:
        return _err("--trials must be > 0")
    if args.noise < 0.0:
        return _err("--noise must be >= 0")
    if args.calibration_samples <= 0:
        return _err("--calibration-samples must be > 0")

    try:
        summary = run_closed_loop(
            trials=int(args.trials),
            noise_m=float(args.noise),
            calibration_samples=int(args.calibration_samples),
            seed=int(args.seed),
            out_dir=args.out_dir,
        )
    except Exception as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    for k in ["accuracy", "classifications", "confirmations", "corrections", "no_hits", "sample_log", "eval_json"]:
        print(f"{k}: {summary[k]}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())

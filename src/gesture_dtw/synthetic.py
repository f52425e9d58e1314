"""Synthetic mouse gestures for demos, benchmarks and tests.

Each shape is drawn in screen coordinates (y grows downward) with optional
jitter and idle samples at both ends, the way a hand-recorded gesture
looks when recording starts before the motion does.
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np

from gesture_dtw.dataset import TimeseriesDataset


def _unit_path(shape: str, n: int) -> np.ndarray:
    t = np.linspace(0.0, 1.0, n)
    if shape == "swipe_right":
        return np.column_stack([t, np.zeros(n)])
    if shape == "swipe_left":
        return np.column_stack([1.0 - t, np.zeros(n)])
    if shape == "swipe_up":
        return np.column_stack([np.zeros(n), 1.0 - t])
    if shape == "swipe_down":
        return np.column_stack([np.zeros(n), t])
    if shape in ("circle_cw", "circle_ccw"):
        angles = 2 * math.pi * t
        if shape == "circle_ccw":
            angles = -angles
        return np.column_stack([0.5 + 0.5 * np.cos(angles), 0.5 + 0.5 * np.sin(angles)])
    if shape == "z_pattern":
        corners = np.array([[0, 0], [1, 0], [0, 1], [1, 1]], dtype=np.float64)
        return _polyline(corners, n)
    if shape == "wave":
        return np.column_stack([t, 0.3 * np.sin(4 * math.pi * t)])
    raise ValueError(f"Unknown shape {shape!r}. Available: {', '.join(SHAPES)}")


def _polyline(corners: np.ndarray, n: int) -> np.ndarray:
    seg = np.linalg.norm(np.diff(corners, axis=0), axis=1)
    cum = np.concatenate([[0.0], np.cumsum(seg)])
    targets = np.linspace(0.0, cum[-1], n)
    return np.column_stack([np.interp(targets, cum, corners[:, d]) for d in range(corners.shape[1])])


SHAPES = (
    "swipe_right", "swipe_left", "swipe_up", "swipe_down",
    "circle_cw", "circle_ccw", "z_pattern", "wave",
)


def make_gesture(
    shape: str,
    n_points: int = 40,
    scale: float = 200.0,
    origin: tuple[float, float] = (300.0, 300.0),
    noise: float = 0.0,
    idle: int = 0,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Generate one (n_points + 2 * idle, 2) gesture in pixel coordinates."""
    rng = rng or np.random.default_rng()
    path = _unit_path(shape, n_points) * scale + np.asarray(origin, dtype=np.float64)
    if noise > 0:
        path = path + rng.normal(0.0, noise, size=path.shape)
    if idle > 0:
        path = np.vstack([np.repeat(path[:1], idle, axis=0), path, np.repeat(path[-1:], idle, axis=0)])
    return path


def make_dataset(
    shapes: tuple[str, ...] = ("swipe_right", "circle_cw", "z_pattern"),
    examples_per_class: int = 5,
    n_points: int = 40,
    noise: float = 2.0,
    idle: int = 0,
    seed: Optional[int] = 0,
) -> TimeseriesDataset:
    """Dataset with one class per shape, labels 1..len(shapes)."""
    rng = np.random.default_rng(seed)
    dataset = TimeseriesDataset(num_dimensions=2, name="synthetic")
    for label, shape in enumerate(shapes, start=1):
        for _ in range(examples_per_class):
            origin = tuple(rng.uniform(100.0, 500.0, size=2))
            length = max(5, int(n_points + rng.integers(-n_points // 8, n_points // 8 + 1)))
            dataset.add_sample(label, make_gesture(shape, length, origin=origin, noise=noise, idle=idle, rng=rng))
    return dataset

#!/usr/bin/env python3
"""gesture-dtw Benchmark: DTW distance cost, training time and streaming latency.

Uses synthetic mouse gestures, no window required.

Usage:
    python examples/benchmark.py
    python examples/benchmark.py --iterations 2000 --length 60 --classes 4
"""

from __future__ import annotations

import argparse
import gc
import sys
import time
from pathlib import Path

import numpy as np

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from gesture_dtw.config import DTWConfig
from gesture_dtw.dtw import DTW, dtw_distance
from gesture_dtw.synthetic import SHAPES, make_dataset, make_gesture


def summarize(times: list[float]) -> dict:
    times = sorted(times)
    n = len(times)
    return {
        "mean_ms": sum(times) / n * 1000,
        "p50_ms": times[n // 2] * 1000,
        "p95_ms": times[int(n * 0.95)] * 1000,
        "p99_ms": times[min(n - 1, int(n * 0.99))] * 1000,
    }


def benchmark_distance(length: int, iterations: int, radius) -> dict:
    """Time one DTW alignment between two gestures of ``length`` samples."""
    rng = np.random.default_rng(0)
    a = make_gesture("circle_cw", length, noise=2.0, rng=rng)
    b = make_gesture("circle_cw", length, noise=2.0, rng=rng)

    for _ in range(5):
        dtw_distance(a, b, radius)

    gc.collect()
    times = []
    for _ in range(iterations):
        t0 = time.perf_counter()
        dtw_distance(a, b, radius)
        times.append(time.perf_counter() - t0)
    return summarize(times)


def benchmark_streaming(classes: int, examples: int, length: int, iterations: int) -> dict:
    """Train on synthetic data, then time per-sample streaming prediction."""
    shapes = SHAPES[:classes]
    dataset = make_dataset(shapes, examples_per_class=examples, n_points=length)
    dtw = DTW(DTWConfig(enable_null_rejection=True, offset_using_first_sample=True))

    t0 = time.perf_counter()
    dtw.train(dataset)
    train_ms = (time.perf_counter() - t0) * 1000

    stream = np.vstack([make_gesture(shapes[i % classes], length) for i in range(iterations // length + 2)])
    for sample in stream[:dtw.buffer_length]:
        dtw.predict(sample)

    gc.collect()
    times = []
    for sample in stream[dtw.buffer_length:dtw.buffer_length + iterations]:
        t0 = time.perf_counter()
        dtw.predict(sample)
        times.append(time.perf_counter() - t0)

    result = summarize(times)
    result["train_ms"] = train_ms
    result["buffer_length"] = dtw.buffer_length
    return result


def main():
    parser = argparse.ArgumentParser(description="Benchmark DTW gesture classification")
    parser.add_argument("--iterations", type=int, default=500, help="Timed iterations")
    parser.add_argument("--length", type=int, default=40, help="Samples per gesture")
    parser.add_argument("--classes", type=int, default=3, help="Gesture classes (max %d)" % len(SHAPES))
    parser.add_argument("--examples", type=int, default=5, help="Training examples per class")
    args = parser.parse_args()

    classes = max(1, min(args.classes, len(SHAPES)))

    print("=" * 60)
    print("gesture-dtw Benchmark")
    print("=" * 60)

    print(f"\nDTW distance, {args.length} x {args.length} samples")
    for label, radius in [("full", None), ("band 0.2", 0.2), ("band 0.1", 0.1)]:
        r = benchmark_distance(args.length, args.iterations, radius)
        print(f"   {label:<9} mean {r['mean_ms']:.3f} ms   p95 {r['p95_ms']:.3f} ms")

    print(f"\nStreaming prediction, {classes} classes x {args.examples} examples")
    r = benchmark_streaming(classes, args.examples, args.length, args.iterations)
    print(f"   Training:      {r['train_ms']:.1f} ms")
    print(f"   Buffer length: {r['buffer_length']}")
    print(f"   Mean latency:  {r['mean_ms']:.3f} ms")
    print(f"   P50 latency:   {r['p50_ms']:.3f} ms")
    print(f"   P95 latency:   {r['p95_ms']:.3f} ms")
    print(f"   P99 latency:   {r['p99_ms']:.3f} ms")
    if r["mean_ms"] > 0:
        print(f"   Throughput:    {1000 / r['mean_ms']:.0f} samples/s")


if __name__ == "__main__":
    main()

"""Recording of gesture timeseries and of whole input streams.

``TimeseriesRecorder`` collects the samples of one gesture while the
operator holds recording on. ``StreamRecorder`` / ``StreamPlayer`` capture a
live session (one mouse sample per tick plus the key pressed on that tick)
so it can be replayed through a fresh session without a window, e.g. by
``gesture-dtw replay`` or in tests.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from gesture_dtw.dataset import DatasetError

logger = logging.getLogger("gesture_dtw.recorder")

STREAM_FORMAT_VERSION = 1


class TimeseriesRecorder:
    """Accumulates samples into one timeseries between start() and stop().

    Usage:
        recorder = TimeseriesRecorder()
        recorder.start()
        recorder.add_sample([x, y])   # once per frame
        timeseries = recorder.stop()  # (N, D) array
    """

    def __init__(self):
        self._samples: list[np.ndarray] = []
        self._active = False

    def start(self):
        """Begin a new recording, discarding any unsaved samples."""
        self._samples = []
        self._active = True

    def stop(self) -> np.ndarray:
        """Stop recording and return the captured (N, D) timeseries.

        The samples are discarded either way; raises DatasetError when they
        do not share one width.
        """
        self._active = False
        try:
            return self.timeseries
        finally:
            self._samples = []

    def add_sample(self, sample):
        if self._active:
            self._samples.append(np.asarray(sample, dtype=np.float64).ravel().copy())

    @property
    def is_recording(self) -> bool:
        return self._active

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def timeseries(self) -> np.ndarray:
        if not self._samples:
            return np.zeros((0, 0))
        widths = sorted({len(s) for s in self._samples})
        if len(widths) > 1:
            raise DatasetError(f"recorded samples have mixed widths {widths}")
        return np.vstack(self._samples)


@dataclass
class StreamFrame:
    """One tick of a recorded input stream."""
    timestamp: float  # seconds since the stream started
    sample: np.ndarray
    key: Optional[str] = None  # control key pressed on this tick


class StreamRecorder:
    """Captures the per-tick samples and key presses of a session.

    Usage:
        stream = StreamRecorder()
        stream.start()
        stream.add_frame(sample, key)   # every tick
        stream.stop()
        stream.save("session.json")     # or .npz
    """

    def __init__(self):
        self._timestamps: list[float] = []
        self._samples: list[list[float]] = []
        self._keys: list[Optional[str]] = []
        self._t0 = 0.0
        self._active = False

    def start(self):
        self._timestamps, self._samples, self._keys = [], [], []
        self._t0 = time.monotonic()
        self._active = True

    def stop(self) -> int:
        """Stop capturing. Returns the number of frames."""
        self._active = False
        return self.frame_count

    @property
    def is_recording(self) -> bool:
        return self._active

    @property
    def frame_count(self) -> int:
        return len(self._timestamps)

    @property
    def duration(self) -> float:
        return self._timestamps[-1] if self._timestamps else 0.0

    def add_frame(self, sample, key: Optional[str] = None):
        if not self._active:
            return
        self._timestamps.append(time.monotonic() - self._t0)
        self._samples.append([float(v) for v in np.asarray(sample).ravel()])
        self._keys.append(key or None)

    def save(self, path: str | Path):
        """Write the stream as JSON, or as compressed arrays for a ``.npz`` path."""
        path = Path(path)
        if path.suffix == ".npz":
            self.save_compact(path)
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        frames = [
            {"timestamp": t, "sample": s, "key": k}
            for t, s, k in zip(self._timestamps, self._samples, self._keys)
        ]
        with open(path, "w") as f:
            json.dump({
                "version": STREAM_FORMAT_VERSION,
                "frame_count": self.frame_count,
                "duration": self.duration,
                "frames": frames,
            }, f)
        logger.info("Saved %d stream frames to %s", self.frame_count, path)

    def save_compact(self, path: str | Path):
        """Write the stream as compressed numpy arrays (.npz)."""
        path = Path(path).with_suffix(".npz")
        path.parent.mkdir(parents=True, exist_ok=True)
        width = max((len(s) for s in self._samples), default=0)
        samples = np.zeros((self.frame_count, width))
        for i, s in enumerate(self._samples):
            samples[i, :len(s)] = s
        np.savez_compressed(
            path,
            timestamps=np.asarray(self._timestamps, dtype=np.float64),
            samples=samples,
            keys=np.asarray([k or "" for k in self._keys], dtype=str),
        )
        logger.info("Saved %d stream frames to %s", self.frame_count, path)


class StreamPlayer:
    """Replays a stream written by :class:`StreamRecorder`.

    Usage:
        player = StreamPlayer.load("session.json")
        for frame in player.play():
            if frame.key:
                handle_key(session, frame.key)
            tick(session, frame.sample)
    """

    def __init__(self, frames: list[StreamFrame]):
        self._frames = frames

    @classmethod
    def load(cls, path: str | Path) -> StreamPlayer:
        """Read a .json or .npz stream. Raises ValueError on malformed files."""
        path = Path(path)
        try:
            if path.suffix == ".npz":
                with np.load(path, allow_pickle=False) as data:
                    frames = [
                        StreamFrame(float(t), np.asarray(s, dtype=np.float64), str(k) or None)
                        for t, s, k in zip(data["timestamps"], data["samples"], data["keys"])
                    ]
            else:
                with open(path) as f:
                    raw = json.load(f)
                frames = [
                    StreamFrame(float(fr["timestamp"]), np.asarray(fr["sample"], dtype=np.float64), fr.get("key"))
                    for fr in raw["frames"]
                ]
        except (KeyError, TypeError) as e:
            raise ValueError(f"{path}: not a recorded input stream ({e})") from e
        logger.debug("Loaded %d stream frames from %s", len(frames), path)
        return cls(frames)

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        return self._frames[-1].timestamp if self._frames else 0.0

    @property
    def key_events(self) -> list[tuple[float, str]]:
        """(timestamp, key) of every tick that carried a key press."""
        return [(f.timestamp, f.key) for f in self._frames if f.key]

    def get_frame(self, index: int) -> Optional[StreamFrame]:
        if not 0 <= index < len(self._frames):
            return None
        f = self._frames[index]
        return StreamFrame(f.timestamp, f.sample.copy(), f.key)

    def play(self) -> Iterator[StreamFrame]:
        """Yield every frame immediately."""
        for i in range(len(self._frames)):
            yield self.get_frame(i)

    def play_realtime(self, speed: float = 1.0) -> Iterator[StreamFrame]:
        """Yield frames at their recorded pace, scaled by ``speed``."""
        if speed <= 0:
            raise ValueError("speed must be > 0")
        start = time.monotonic()
        for frame in self.play():
            wait = frame.timestamp / speed - (time.monotonic() - start)
            if wait > 0:
                time.sleep(wait)
            yield frame

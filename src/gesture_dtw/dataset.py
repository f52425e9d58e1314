"""Labelled timeseries dataset with text and CSV persistence.

Each training example is one recorded gesture: a class label and an
(N, D) array of samples. Label 0 is reserved for the null gesture and
is never stored.

Usage:
    dataset = TimeseriesDataset(num_dimensions=2)
    dataset.add_sample(1, np.array([[0, 0], [1, 0], [2, 0]]))
    dataset.save("TrainingData.txt")

    dataset = TimeseriesDataset.load("TrainingData.txt")
"""

from __future__ import annotations

import csv
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

logger = logging.getLogger("gesture_dtw.dataset")

NULL_CLASS_LABEL = 0
FILE_HEADER = "GRT_LABELLED_TIME_SERIES_CLASSIFICATION_DATA_FILE_V1.0"
EXAMPLE_MARKER = "************TIME_SERIES************"
DEFAULT_NAME = "NOT_SET"


class DatasetError(ValueError):
    """Raised for invalid examples and unreadable or unwritable dataset files."""


@dataclass
class TrainingExample:
    """One recorded gesture."""
    class_label: int
    data: np.ndarray  # shape (N, D)

    @property
    def length(self) -> int:
        return len(self.data)


class TimeseriesDataset:
    """An ordered collection of labelled timeseries."""

    def __init__(
        self,
        num_dimensions: Optional[int] = None,
        name: str = DEFAULT_NAME,
        info_text: str = "",
    ):
        self.num_dimensions = num_dimensions
        self.name = name
        self.info_text = info_text
        self.external_ranges: Optional[list[tuple[float, float]]] = None
        self._examples: list[TrainingExample] = []

    def add_sample(self, class_label: int, data) -> TrainingExample:
        """Validate and append a training example. Returns the stored example."""
        label = int(class_label)
        if label == NULL_CLASS_LABEL:
            raise DatasetError("class label 0 is reserved for the null gesture")
        if label < 0:
            raise DatasetError(f"class label must be positive, got {label}")

        try:
            arr = np.array(data, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise DatasetError(f"timeseries is not a numeric (N, D) array: {e}") from e
        if arr.ndim == 1 and arr.size > 0 and self.num_dimensions == 1:
            arr = arr.reshape(-1, 1)
        if arr.ndim != 2 or arr.shape[0] == 0:
            raise DatasetError(f"timeseries must be a non-empty (N, D) array, got shape {arr.shape}")

        if self.num_dimensions is None:
            self.num_dimensions = arr.shape[1]
        elif arr.shape[1] != self.num_dimensions:
            raise DatasetError(
                f"timeseries has {arr.shape[1]} dimensions, dataset expects {self.num_dimensions}"
            )

        example = TrainingExample(class_label=label, data=arr)
        self._examples.append(example)
        return example

    def clear(self):
        """Remove all examples. Dimensions and metadata are kept."""
        self._examples.clear()

    def remove_class(self, class_label: int) -> int:
        """Drop every example of a class. Returns the number removed."""
        before = len(self._examples)
        self._examples = [e for e in self._examples if e.class_label != class_label]
        return before - len(self._examples)

    def get_class_data(self, class_label: int) -> list[TrainingExample]:
        return [e for e in self._examples if e.class_label == class_label]

    @property
    def class_labels(self) -> list[int]:
        return sorted({e.class_label for e in self._examples})

    @property
    def class_counts(self) -> dict[int, int]:
        counts = Counter(e.class_label for e in self._examples)
        return {label: counts[label] for label in sorted(counts)}

    @property
    def num_classes(self) -> int:
        return len(self.class_labels)

    @property
    def num_samples(self) -> int:
        return len(self._examples)

    @property
    def examples(self) -> list[TrainingExample]:
        return list(self._examples)

    def __len__(self) -> int:
        return len(self._examples)

    def __iter__(self) -> Iterator[TrainingExample]:
        return iter(list(self._examples))

    def __getitem__(self, index: int) -> TrainingExample:
        return self._examples[index]

    def split(
        self, fraction: float, seed: Optional[int] = None
    ) -> tuple[TimeseriesDataset, TimeseriesDataset]:
        """Stratified split into (train, test).

        Each class keeps at least one example on the training side.
        """
        if not 0.0 < fraction < 1.0:
            raise DatasetError("split fraction must be within (0, 1)")

        rng = np.random.default_rng(seed)
        train, test = self._empty_like(), self._empty_like()
        for label in self.class_labels:
            members = self.get_class_data(label)
            order = rng.permutation(len(members))
            n_train = max(1, int(round(len(members) * fraction)))
            for rank, idx in enumerate(order):
                target = train if rank < n_train else test
                target.add_sample(label, members[idx].data)
        return train, test

    def merge(self, other: TimeseriesDataset):
        """Append every example of another dataset."""
        if (
            self.num_dimensions is not None
            and other.num_dimensions is not None
            and self.num_dimensions != other.num_dimensions
        ):
            raise DatasetError(
                f"cannot merge {other.num_dimensions}-D data into a {self.num_dimensions}-D dataset"
            )
        for example in other:
            self.add_sample(example.class_label, example.data)

    def summary(self) -> dict:
        lengths = [e.length for e in self._examples]
        return {
            "name": self.name,
            "num_dimensions": self.num_dimensions,
            "num_samples": self.num_samples,
            "num_classes": self.num_classes,
            "class_counts": self.class_counts,
            "min_length": min(lengths) if lengths else 0,
            "max_length": max(lengths) if lengths else 0,
            "mean_length": float(np.mean(lengths)) if lengths else 0.0,
        }

    def _empty_like(self) -> TimeseriesDataset:
        ds = TimeseriesDataset(self.num_dimensions, self.name, self.info_text)
        ds.external_ranges = self.external_ranges
        return ds

    # --- Persistence ---

    def save(self, path: str | Path):
        """Save to disk. A ``.csv`` suffix selects CSV, anything else the text format."""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if path.suffix.lower() == ".csv":
                self._save_csv(path)
            else:
                self._save_text(path)
        except OSError as e:
            raise DatasetError(f"failed to save dataset to {path}: {e}") from e
        logger.info("Saved %d examples to %s", len(self), path)

    @classmethod
    def load(cls, path: str | Path) -> TimeseriesDataset:
        """Load a dataset written by :meth:`save`."""
        path = Path(path)
        try:
            if path.suffix.lower() == ".csv":
                dataset = cls._load_csv(path)
            else:
                dataset = cls._load_text(path)
        except (OSError, UnicodeDecodeError) as e:
            raise DatasetError(f"failed to load dataset from {path}: {e}") from e
        logger.info("Loaded %d examples from %s", len(dataset), path)
        return dataset

    def _save_text(self, path: Path):
        lines = [
            FILE_HEADER,
            f"DatasetName: {self.name}",
            f"InfoText: {self.info_text}",
            f"NumDimensions: {self.num_dimensions or 0}",
            f"TotalNumTrainingExamples: {len(self)}",
            f"NumberOfClasses: {self.num_classes}",
            "ClassIDsAndCounters: ",
        ]
        for label, count in self.class_counts.items():
            lines.append(f"{label}\t{count}\t{DEFAULT_NAME}")

        if self.external_ranges:
            lines.append("UseExternalRanges: 1")
            for lo, hi in self.external_ranges:
                lines.append(f"{lo!r}\t{hi!r}")
        else:
            lines.append("UseExternalRanges: 0")

        lines.append("LabelledTimeSeriesTrainingData:")
        for example in self._examples:
            lines.append(EXAMPLE_MARKER)
            lines.append(f"ClassID: {example.class_label}")
            lines.append(f"TimeSeriesLength: {example.length}")
            lines.append("TimeSeriesData: ")
            for row in example.data:
                lines.append("\t".join(repr(float(v)) for v in row))

        path.write_text("\n".join(lines) + "\n")

    @classmethod
    def _load_text(cls, path: Path) -> TimeseriesDataset:
        reader = _LineReader(path.read_text().splitlines(), path)

        if reader.next() != FILE_HEADER:
            raise DatasetError(f"{path}: not a labelled timeseries dataset file")

        name = reader.field("DatasetName")
        info_text = reader.field("InfoText")
        num_dimensions = reader.int_field("NumDimensions")
        total = reader.int_field("TotalNumTrainingExamples")
        num_classes = reader.int_field("NumberOfClasses")

        reader.field("ClassIDsAndCounters")
        for _ in range(num_classes):
            parts = reader.next().split()
            if len(parts) < 2:
                raise reader.error("malformed class counter line")

        dataset = cls(num_dimensions=num_dimensions or None, name=name, info_text=info_text)

        if reader.int_field("UseExternalRanges"):
            ranges = []
            for _ in range(num_dimensions):
                parts = reader.floats(2)
                ranges.append((parts[0], parts[1]))
            dataset.external_ranges = ranges

        reader.field("LabelledTimeSeriesTrainingData")
        for _ in range(total):
            if reader.next() != EXAMPLE_MARKER:
                raise reader.error("expected a time series marker")
            label = reader.int_field("ClassID")
            length = reader.int_field("TimeSeriesLength")
            reader.field("TimeSeriesData")
            data = np.array([reader.floats(num_dimensions) for _ in range(length)])
            dataset.add_sample(label, data)

        return dataset

    def _save_csv(self, path: Path):
        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            for index, example in enumerate(self._examples, start=1):
                for row in example.data:
                    writer.writerow([index, example.class_label] + [repr(float(v)) for v in row])

    @classmethod
    def _load_csv(cls, path: Path) -> TimeseriesDataset:
        dataset = cls()
        current_index = None
        current_label = None
        rows: list[list[float]] = []

        with open(path, newline="") as f:
            for line_no, record in enumerate(csv.reader(f), start=1):
                if not record:
                    continue
                if len(record) < 3:
                    raise DatasetError(f"{path}:{line_no}: expected index,label,features...")
                try:
                    index = int(record[0])
                    label = int(record[1])
                    values = [float(v) for v in record[2:]]
                except ValueError as e:
                    raise DatasetError(f"{path}:{line_no}: {e}") from e

                if index != current_index:
                    if rows:
                        dataset.add_sample(current_label, rows)
                    current_index, current_label, rows = index, label, []
                elif label != current_label:
                    raise DatasetError(f"{path}:{line_no}: label changes within time series {index}")
                rows.append(values)

        if rows:
            dataset.add_sample(current_label, rows)
        return dataset


class _LineReader:
    """Sequential reader for the text dataset format with line-numbered errors."""

    def __init__(self, lines: list[str], path: Path):
        self._lines = lines
        self._pos = 0
        self._path = path

    def error(self, message: str) -> DatasetError:
        return DatasetError(f"{self._path}:{self._pos}: {message}")

    def next(self) -> str:
        if self._pos >= len(self._lines):
            raise self.error("unexpected end of file")
        line = self._lines[self._pos]
        self._pos += 1
        return line.rstrip("\r\n")

    def field(self, key: str) -> str:
        line = self.next()
        prefix = f"{key}:"
        if not line.startswith(prefix):
            raise self.error(f"expected '{prefix}'")
        return line[len(prefix):].strip()

    def int_field(self, key: str) -> int:
        value = self.field(key)
        try:
            return int(value)
        except ValueError:
            raise self.error(f"{key} must be an integer, got {value!r}") from None

    def floats(self, count: int) -> list[float]:
        parts = self.next().split()
        if len(parts) != count:
            raise self.error(f"expected {count} values, got {len(parts)}")
        try:
            return [float(p) for p in parts]
        except ValueError as e:
            raise self.error(str(e)) from None

"""Operator session: the dataset, pipeline and recording state of one run.

All state lives in a :class:`Session` that is passed explicitly to the
control functions below; the viewer, the server and the replay command all
drive the same functions.

Key bindings:
    r       start / stop recording a training example
    [ / ]   decrease / increase the training class label
    0-9     set the training class label
    t       train the pipeline
    s / l   save / load the training dataset
    c       clear the training dataset
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Optional, Union

from gesture_dtw.classifier import make_classifier
from gesture_dtw.config import AppConfig
from gesture_dtw.dataset import DatasetError, TimeseriesDataset
from gesture_dtw.pipeline import GesturePipeline, PredictionEvent
from gesture_dtw.recorder import TimeseriesRecorder

logger = logging.getLogger("gesture_dtw.session")

MSG_TRAINED = "Pipeline Trained"
MSG_TRAIN_FAILED = "WARNING: Failed to train pipeline"
MSG_SAVED = "Training data saved to file"
MSG_SAVE_FAILED = "WARNING: Failed to save training data to file"
MSG_LOADED = "Training data loaded from file"
MSG_LOAD_FAILED = "WARNING: Failed to load training data from file"
MSG_CLEARED = "Training data cleared"
MSG_ADD_FAILED = "WARNING: Failed to add training example"


@dataclass
class Session:
    """Everything the control surface acts on."""
    dataset: TimeseriesDataset
    pipeline: GesturePipeline
    recorder: TimeseriesRecorder = field(default_factory=TimeseriesRecorder)
    training_class_label: int = 1
    info_text: str = ""
    dataset_path: str = "TrainingData.txt"
    num_dimensions: int = 2

    @property
    def recording(self) -> bool:
        return self.recorder.is_recording

    @classmethod
    def from_config(cls, config: AppConfig) -> Session:
        classifier = make_classifier(config.classifier_name, config.classifier)
        return cls(
            dataset=TimeseriesDataset(num_dimensions=config.num_dimensions),
            pipeline=GesturePipeline(classifier),
            dataset_path=config.dataset_path,
            num_dimensions=config.num_dimensions,
        )


def tick(session: Session, sample) -> Optional[PredictionEvent]:
    """Process one input frame: record it if recording, predict if trained."""
    if session.recorder.is_recording:
        session.recorder.add_sample(sample)
    if session.pipeline.trained:
        return session.pipeline.predict(sample)
    return None


# --- Control operations ---

def toggle_recording(session: Session) -> bool:
    """Start or stop recording. Stopping stores the example under the active label."""
    if not session.recorder.is_recording:
        session.recorder.start()
        logger.debug("Recording class %d", session.training_class_label)
        return True

    try:
        data = session.recorder.stop()
        session.dataset.add_sample(session.training_class_label, data)
    except DatasetError as e:
        logger.warning("Discarding recorded example: %s", e)
        session.info_text = MSG_ADD_FAILED
        return False
    logger.info(
        "Added %d-sample example for class %d (%d examples total)",
        len(data), session.training_class_label, len(session.dataset),
    )
    return False


def increment_label(session: Session) -> int:
    session.training_class_label += 1
    return session.training_class_label


def decrement_label(session: Session) -> int:
    if session.training_class_label > 1:
        session.training_class_label -= 1
    return session.training_class_label


def set_label(session: Session, label: int) -> int:
    if label < 0:
        raise ValueError(f"class label must be >= 0, got {label}")
    session.training_class_label = label
    return session.training_class_label


def train(session: Session) -> bool:
    ok = session.pipeline.train(session.dataset)
    session.info_text = MSG_TRAINED if ok else MSG_TRAIN_FAILED
    return ok


def save_dataset(session: Session, path: Optional[str] = None) -> bool:
    try:
        session.dataset.save(path or session.dataset_path)
    except DatasetError as e:
        logger.warning("%s", e)
        session.info_text = MSG_SAVE_FAILED
        return False
    session.info_text = MSG_SAVED
    return True


def load_dataset(session: Session, path: Optional[str] = None) -> bool:
    """Replace the dataset with one from disk. The current one is kept on failure."""
    try:
        dataset = TimeseriesDataset.load(path or session.dataset_path)
    except DatasetError as e:
        logger.warning("%s", e)
        session.info_text = MSG_LOAD_FAILED
        return False
    if dataset.num_dimensions is None:
        dataset.num_dimensions = session.num_dimensions
    elif dataset.num_dimensions != session.num_dimensions:
        logger.warning(
            "Refusing %d-D training data, the session records %d-D samples",
            dataset.num_dimensions, session.num_dimensions,
        )
        session.info_text = MSG_LOAD_FAILED
        return False
    session.dataset = dataset
    session.info_text = MSG_LOADED
    return True


def clear_dataset(session: Session) -> bool:
    session.dataset.clear()
    session.info_text = MSG_CLEARED
    return True


COMMANDS: dict[str, Callable[[Session], object]] = {
    "record": toggle_recording,
    "label_up": increment_label,
    "label_down": decrement_label,
    "train": train,
    "save": save_dataset,
    "load": load_dataset,
    "clear": clear_dataset,
}

KEY_BINDINGS: dict[str, Callable[[Session], object]] = {
    "r": toggle_recording,
    "[": decrement_label,
    "]": increment_label,
    "t": train,
    "s": save_dataset,
    "l": load_dataset,
    "c": clear_dataset,
}
for _digit in range(10):
    KEY_BINDINGS[str(_digit)] = partial(set_label, label=_digit)


def run_command(session: Session, name: str):
    """Run a named control operation. Raises KeyError for unknown names."""
    try:
        command = COMMANDS[name]
    except KeyError:
        raise KeyError(f"Unknown command {name!r}. Available: {', '.join(COMMANDS)}") from None
    session.info_text = ""
    return command(session)


def handle_key(session: Session, key: Union[str, int]) -> bool:
    """Dispatch a key press. Returns False when the key is not bound."""
    if isinstance(key, int):
        if key < 0 or key > 0x10FFFF:
            return False
        key = chr(key)
    session.info_text = ""
    action = KEY_BINDINGS.get(key)
    if action is None:
        return False
    action(session)
    return True


def status(session: Session) -> dict:
    """Everything the info panel shows, as plain data."""
    pipeline = session.pipeline
    return {
        "recording": session.recording,
        "recorded_samples": session.recorder.sample_count,
        "training_class_label": session.training_class_label,
        "num_training_samples": len(session.dataset),
        "class_counts": {str(k): v for k, v in session.dataset.class_counts.items()},
        "trained": pipeline.trained,
        "class_labels": pipeline.class_labels,
        "predicted_class_label": pipeline.predicted_class_label,
        "maximum_likelihood": pipeline.maximum_likelihood,
        "class_likelihoods": list(pipeline.class_likelihoods),
        "info_text": session.info_text,
    }

"""gesture-dtw CLI, the main entry point for all operations.

Usage:
    gesture-dtw demo        Open the mouse gesture window
    gesture-dtw serve       Start the HTTP / WebSocket server
    gesture-dtw train       Train a DTW model from a dataset file
    gesture-dtw predict     Classify every example of a dataset with a model
    gesture-dtw info        Summarise a dataset file
    gesture-dtw convert     Convert a dataset between text and CSV
    gesture-dtw replay      Replay a recorded input stream through a session
    gesture-dtw benchmark   Measure per-sample prediction latency
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import numpy as np
import typer

from gesture_dtw.config import AppConfig
from gesture_dtw.dataset import DatasetError, TimeseriesDataset
from gesture_dtw.dtw import DTW, TrainingError

logger = logging.getLogger("gesture_dtw.cli")

app = typer.Typer(
    name="gesture-dtw",
    help="Record mouse gestures and classify them with Dynamic Time Warping.",
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config file"),
    log_level: str = typer.Option("info", help="Log level"),
):
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        ctx.obj = AppConfig.from_yaml(config) if config else AppConfig()
    except (OSError, ValueError) as e:
        typer.echo(f"Could not read config {config}: {e}", err=True)
        raise typer.Exit(1)
    ctx.obj.log_level = log_level


def _load_dataset(path: str) -> TimeseriesDataset:
    try:
        return TimeseriesDataset.load(path)
    except DatasetError as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(1)


def _load_model(path: str) -> DTW:
    dtw = DTW()
    try:
        dtw.load_model(path)
    except TrainingError as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(1)
    return dtw


def _build_session(config: AppConfig, dataset: Optional[str], model: Optional[str]):
    from gesture_dtw.pipeline import GesturePipeline
    from gesture_dtw.session import Session

    session = Session.from_config(config)
    if dataset:
        session.dataset = _load_dataset(dataset)
        session.dataset_path = dataset
        typer.echo(f"Loaded dataset: {dataset} ({len(session.dataset)} examples)")
    if model:
        session.pipeline = GesturePipeline(_load_model(model))
        typer.echo(f"Loaded model: {model}")
    return session


@app.command()
def demo(
    ctx: typer.Context,
    dataset: Optional[str] = typer.Option(None, help="Dataset file to load at start"),
    model: Optional[str] = typer.Option(None, help="Trained model file to load at start"),
    record_stream: Optional[str] = typer.Option(None, help="Save the input stream to this file on exit"),
):
    """Open the mouse gesture window."""
    from gesture_dtw.recorder import StreamRecorder
    from gesture_dtw.viewer import Viewer

    config: AppConfig = ctx.obj
    session = _build_session(config, dataset, model)

    stream = None
    if record_stream:
        stream = StreamRecorder()
        stream.start()

    typer.echo("r: record  [ ]: label  0-9: set label  t: train  s: save  l: load  c: clear  q: quit")
    try:
        Viewer(session, config, stream_recorder=stream).run()
    finally:
        if stream is not None:
            stream.stop()
            stream.save(record_stream)
            typer.echo(f"Saved {stream.frame_count} frames to {record_stream}")


@app.command()
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Port"),
    dataset: Optional[str] = typer.Option(None, help="Dataset file to load at start"),
    model: Optional[str] = typer.Option(None, help="Trained model file to load at start"),
):
    """Start the HTTP / WebSocket gesture server."""
    import uvicorn

    from gesture_dtw import server

    config: AppConfig = ctx.obj
    session = _build_session(config, dataset, model)
    server.configure(config, session)

    host = host or config.host
    port = port or config.port
    typer.echo(f"Starting gesture-dtw server on {host}:{port}")
    uvicorn.run(server.app, host=host, port=port, log_level=config.log_level)


@app.command()
def train(
    ctx: typer.Context,
    dataset: str = typer.Argument(..., help="Training dataset (.txt or .csv)"),
    output: Optional[str] = typer.Option(None, "-o", "--output", help="Output model path"),
    null_rejection_coeff: Optional[float] = typer.Option(None, help="Override the null rejection coefficient"),
    test_fraction: float = typer.Option(0.0, help="Hold out this fraction of each class for evaluation"),
    seed: int = typer.Option(0, help="Seed for the train/test split"),
):
    """Train a DTW model from a dataset file."""
    config: AppConfig = ctx.obj
    if null_rejection_coeff is not None:
        config.classifier.null_rejection_coeff = null_rejection_coeff
        try:
            config.classifier.validate()
        except ValueError as e:
            typer.echo(f"Invalid classifier settings: {e}", err=True)
            raise typer.Exit(1)

    data = _load_dataset(dataset)
    test = None
    if test_fraction > 0:
        try:
            data, test = data.split(1.0 - test_fraction, seed=seed)
        except DatasetError as e:
            typer.echo(f"{e}", err=True)
            raise typer.Exit(1)

    typer.echo(f"Training data: {len(data)} examples, {data.num_classes} classes")
    dtw = DTW(config.classifier)
    try:
        dtw.train(data)
    except TrainingError as e:
        typer.echo(f"Training failed: {e}", err=True)
        raise typer.Exit(1)

    for template in dtw.templates:
        typer.echo(
            f"   class {template.class_label}: {template.num_examples} examples, "
            f"template length {len(template.data)}, threshold {template.threshold:.4f}"
        )

    if test is not None and len(test):
        accuracy, _ = _evaluate(dtw, test)
        typer.echo(f"   Held-out accuracy: {accuracy:.1%} on {len(test)} examples")

    output = output or config.model_path
    dtw.save_model(output)
    typer.echo(f"Model saved to: {output}")


def _evaluate(dtw: DTW, dataset: TimeseriesDataset) -> tuple[float, dict[tuple[int, int], int]]:
    confusion: dict[tuple[int, int], int] = {}
    correct = 0
    for example in dataset:
        predicted = dtw.predict_timeseries(example.data).class_label
        confusion[(example.class_label, predicted)] = confusion.get((example.class_label, predicted), 0) + 1
        correct += int(predicted == example.class_label)
    return correct / len(dataset) if len(dataset) else 0.0, confusion


@app.command()
def predict(
    model: str = typer.Argument(..., help="Trained model file"),
    dataset: str = typer.Argument(..., help="Dataset to classify"),
):
    """Classify every example of a dataset and report accuracy."""
    dtw = _load_model(model)
    data = _load_dataset(dataset)
    if not len(data):
        typer.echo("Dataset is empty", err=True)
        raise typer.Exit(1)

    accuracy, confusion = _evaluate(dtw, data)
    typer.echo(f"Accuracy: {accuracy:.1%} ({len(data)} examples)")
    typer.echo("Confusion (true -> predicted: count):")
    for (true, pred), count in sorted(confusion.items()):
        typer.echo(f"   {true} -> {pred}: {count}")


@app.command()
def info(dataset: str = typer.Argument(..., help="Dataset file")):
    """Summarise a dataset file."""
    summary = _load_dataset(dataset).summary()
    typer.echo(f"Dataset: {summary['name']}")
    typer.echo(f"   Dimensions: {summary['num_dimensions']}")
    typer.echo(f"   Examples:   {summary['num_samples']}")
    typer.echo(f"   Classes:    {summary['num_classes']}")
    for label, count in summary["class_counts"].items():
        typer.echo(f"      class {label}: {count}")
    typer.echo(
        f"   Length:     min {summary['min_length']}, max {summary['max_length']}, "
        f"mean {summary['mean_length']:.1f}"
    )


@app.command()
def convert(
    source: str = typer.Argument(..., help="Input dataset"),
    destination: str = typer.Argument(..., help="Output dataset (.csv selects CSV)"),
):
    """Convert a dataset between the text and CSV formats."""
    data = _load_dataset(source)
    try:
        data.save(destination)
    except DatasetError as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Wrote {len(data)} examples to {destination}")


@app.command()
def replay(
    ctx: typer.Context,
    recording: str = typer.Argument(..., help="Recorded input stream (.json or .npz)"),
    dataset: Optional[str] = typer.Option(None, help="Dataset file to load first"),
    model: Optional[str] = typer.Option(None, help="Trained model file to load first"),
    speed: float = typer.Option(1.0, help="Playback speed multiplier"),
    realtime: bool = typer.Option(False, help="Play at original timing"),
):
    """Replay a recorded input stream (samples and key presses) through a session."""
    from gesture_dtw.recorder import StreamPlayer
    from gesture_dtw.session import handle_key, tick

    path = Path(recording)
    if not path.exists():
        typer.echo(f"Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    try:
        player = StreamPlayer.load(path)
    except (OSError, ValueError) as e:
        typer.echo(f"Could not read recording {recording}: {e}", err=True)
        raise typer.Exit(1)
    session = _build_session(ctx.obj, dataset, model)
    typer.echo(f"Replaying {path.name} ({player.frame_count} frames, {player.duration:.1f}s)")

    last_label = None
    frames = player.play_realtime(speed=speed) if realtime else player.play()
    for frame in frames:
        if frame.key:
            handle_key(session, frame.key)
            if session.info_text:
                typer.echo(f"   [{frame.timestamp:7.2f}s] {session.info_text}")
        event = tick(session, frame.sample)
        if event is not None and event.class_label != last_label:
            typer.echo(
                f"   [{frame.timestamp:7.2f}s] class {event.class_label} "
                f"(likelihood {event.max_likelihood:.2f})"
            )
            last_label = event.class_label

    stats = session.pipeline.stats
    typer.echo(f"Replay complete. {stats.total_predictions} predictions, {len(session.dataset)} examples.")


@app.command()
def benchmark(
    ctx: typer.Context,
    classes: int = typer.Option(3, help="Number of synthetic gesture classes"),
    examples: int = typer.Option(5, help="Examples per class"),
    iterations: int = typer.Option(500, min=1, help="Samples to predict"),
):
    """Measure training time and per-sample streaming prediction latency."""
    from gesture_dtw.synthetic import SHAPES, make_dataset, make_gesture

    config: AppConfig = ctx.obj
    shapes = SHAPES[:max(1, min(classes, len(SHAPES)))]
    data = make_dataset(shapes, examples_per_class=examples)
    typer.echo(f"Benchmark: {len(shapes)} classes x {examples} examples, {iterations} samples")

    dtw = DTW(config.classifier)
    t0 = time.perf_counter()
    dtw.train(data)
    train_ms = (time.perf_counter() - t0) * 1000

    stream = np.vstack([make_gesture(shapes[i % len(shapes)], 40) for i in range(iterations // 40 + 1)])
    times = []
    for sample in stream[:iterations]:
        t0 = time.perf_counter()
        dtw.predict(sample)
        times.append(time.perf_counter() - t0)

    times.sort()
    avg_ms = sum(times) / len(times) * 1000
    p95_ms = times[int(len(times) * 0.95)] * 1000
    typer.echo(f"   Training:        {train_ms:.1f} ms")
    typer.echo(f"   Buffer length:   {dtw.buffer_length}")
    typer.echo(f"   Average latency: {avg_ms:.3f} ms")
    typer.echo(f"   P95 latency:     {p95_ms:.3f} ms")
    typer.echo(f"   Throughput:      {1000 / avg_ms if avg_ms > 0 else 0:.0f} samples/s")


def main():
    app()


if __name__ == "__main__":
    main()

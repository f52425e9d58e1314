#!/usr/bin/env python3
"""Mouse gesture demo: record examples, train DTW, classify live.

Controls (focus the window):
    r       start / stop recording an example
    [ ]     previous / next class label, 0-9 set it directly
    t       train        s / l  save / load TrainingData.txt
    c       clear data   q / Esc  quit

Usage:
    python examples/demo_mouse.py
    python examples/demo_mouse.py --synthetic   # start with pre-recorded shapes
"""

import argparse
import logging
import sys

sys.path.insert(0, "src")
from gesture_dtw.config import AppConfig
from gesture_dtw.session import Session, load_dataset, train
from gesture_dtw.synthetic import make_dataset
from gesture_dtw.viewer import Viewer


def main():
    parser = argparse.ArgumentParser(description="Mouse gesture DTW demo")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--dataset", help="Dataset file to load and train on at start")
    parser.add_argument("--synthetic", action="store_true", help="Start with synthetic swipe/circle/Z examples")
    parser.add_argument("--fps", type=int, default=None, help="Frame rate override")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = AppConfig.from_yaml(args.config) if args.config else AppConfig()
    if args.fps:
        config.frame_rate = args.fps
    session = Session.from_config(config)

    if args.dataset:
        session.dataset_path = args.dataset
        if not load_dataset(session):
            print(f"Error: Cannot load {args.dataset}")
            sys.exit(1)
    elif args.synthetic:
        session.dataset = make_dataset(examples_per_class=5)

    if len(session.dataset):
        train(session)
        print(f"{session.info_text}: {len(session.dataset)} examples, classes {session.pipeline.class_labels}")

    print("r: record  [ ]: label  0-9: set label  t: train  s: save  l: load  c: clear  q: quit")
    Viewer(session, config).run()


if __name__ == "__main__":
    main()

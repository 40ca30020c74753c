#!/usr/bin/env python3
"""
Hand Gesture Trainer
Main application entry point.

Architecture:
    - WebcamLandmarkSource writes MediaPipe hand landmarks into a slot
    - GesturePipeline trains / loads the classifier and runs the InferenceLoop
    - EventBus carries label events to the GestureLogger (sequence consumer)
    - Everything shares one asyncio event loop

Usage:
    python main.py collect --labels open closed --samples 30   # record an upload
    python main.py train --data data/gestures.json              # train + save artifacts
    python main.py run --model-dir models/weights               # live recognition
    python main.py run --data data/gestures.json                # train, then live recognition
"""

import sys
import os
import signal
import asyncio
import argparse
import logging

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from core.cancellation import CancellationToken
from core.errors import GestureTrainerError
from core.events import EventBus, Events
from core.pipeline import GesturePipeline
from modules.capture.observation_slot import LatestObservation
from modules.capture.sample_collector import SampleCollector
from modules.utils.config import Config
from modules.utils.logger import setup_logging, GestureLogger

logger = logging.getLogger(__name__)


class GestureTrainerApp:
    """Wires the landmark source, pipeline and label consumer together."""

    def __init__(self, config: Config):
        self._config = config
        self._token = CancellationToken()

        self._bus = EventBus()
        self._slot = LatestObservation()
        self._pipeline = GesturePipeline(self._slot, self._bus, config.as_dict())
        self._gesture_logger = GestureLogger()

        self._bus.subscribe(Events.LABEL_CHANGED, self._gesture_logger.on_label_changed)
        self._bus.subscribe(Events.LABEL_OBSERVED, self._gesture_logger.on_label_observed)
        self._bus.subscribe(Events.WEBCAM_ENABLED, self._on_webcam_enabled)
        self._bus.subscribe(Events.ERROR, self._on_error)

    @property
    def pipeline(self) -> GesturePipeline:
        return self._pipeline

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_webcam_enabled(self, **kwargs):
        logger.info("Webcam enabled, show your hand to the camera")

    def _on_error(self, error=None, category="error", **kwargs):
        if category == "camera":
            logger.error("Camera error: %s", error)
            self._token.cancel("camera failure")

    def _on_epoch(self, epoch, loss):
        logger.debug("Progress: epoch %d, loss %.4f", epoch, loss)

    def handle_signal(self, signum, frame):
        """Handle SIGINT/SIGTERM for graceful shutdown."""
        logger.info("Signal %d received, shutting down...", signum)
        self._token.cancel("signal %d" % signum)
        self._pipeline.cancel_training("signal %d" % signum)

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def _create_source(self):
        from modules.capture.webcam_source import WebcamLandmarkSource
        from modules.detection.hand_detector import HandDetector
        return WebcamLandmarkSource(
            self._config.camera, HandDetector(self._config.mediapipe), self._slot, self._bus,
        )

    async def train(self, data_path: str, output_dir: str = None) -> list:
        self._pipeline.load_dataset(data_path)
        options = self._pipeline.training_options(on_epoch=self._on_epoch)
        await self._pipeline.train(options)
        return self._pipeline.save(output_dir)

    async def run(self, model_dir: str = None, data_path: str = None):
        """Live recognition until Ctrl-C."""
        if data_path:
            await self.train(data_path, model_dir)
        else:
            await self._pipeline.load(model_dir or self._config.artifacts.get("directory"))

        source = self._create_source()
        producer = asyncio.ensure_future(source.run(self._token))
        self._pipeline.start_inference()
        try:
            while not self._token.cancelled and not producer.done():
                await asyncio.sleep(0.1)
        finally:
            self._token.cancel("run finished")
            await self._pipeline.shutdown()
            await producer

        logger.info("Recognized sequence: %s", " ".join(self._gesture_logger.sequence) or "(none)")

    async def collect(self, labels, samples_per_label: int, output: str, append: bool = False):
        """Record ``samples_per_label`` samples for each label into an upload file."""
        collector = SampleCollector(self._slot)
        if append and os.path.isfile(output):
            collector.load(output)

        interval_ms = self._config.collection.get("capture_interval_ms", 200)
        source = self._create_source()
        producer = asyncio.ensure_future(source.run(self._token))
        try:
            for label in labels:
                if self._token.cancelled:
                    break
                logger.info("Show gesture '%s': recording starts in 3 seconds", label)
                await asyncio.sleep(3.0)
                captured = await collector.record(label, samples_per_label, interval_ms, self._token)
                logger.info("Recorded %d samples for '%s'", captured, label)
        finally:
            self._token.cancel("collection finished")
            await producer

        for label, count in collector.counts().items():
            logger.info("  %-15s %d samples", label, count)
        if collector.counts():
            collector.save(output)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Hand Gesture Trainer")
    parser.add_argument("--config", type=str, default=None, help="Path to config.yaml")
    parser.add_argument("--camera", type=int, default=None, help="Camera device ID")
    parser.add_argument("--debug", action="store_true", help="Verbose training progress")
    sub = parser.add_subparsers(dest="mode", required=True)

    train = sub.add_parser("train", help="Train a model from an upload and save it")
    train.add_argument("--data", required=True, help="Training-data upload (JSON)")
    train.add_argument("--output-dir", default=None, help="Artifact directory")
    train.add_argument("--epochs", type=int, default=None)
    train.add_argument("--batch-size", type=int, default=None)
    train.add_argument("--lr", type=float, default=None)

    run = sub.add_parser("run", help="Live gesture recognition")
    run.add_argument("--model-dir", default=None, help="Directory with the three artifact files")
    run.add_argument("--data", default=None, help="Train from this upload instead of loading")

    collect = sub.add_parser("collect", help="Record labelled samples")
    collect.add_argument("--labels", nargs="+", required=True, help="Gesture labels to record")
    collect.add_argument("--samples", type=int, default=30, help="Samples per label")
    collect.add_argument("--output", default=None, help="Upload file to write")
    collect.add_argument("--append", action="store_true", help="Keep samples already in --output")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    overrides = {}
    if args.camera is not None:
        overrides["camera"] = {"device_id": args.camera}
    if args.debug:
        overrides["model"] = {"debug": True}
    if args.mode == "train":
        training = {"epochs": args.epochs, "batch_size": args.batch_size, "learning_rate": args.lr}
        overrides["training"] = {k: v for k, v in training.items() if v is not None}

    config = Config().load(config_path=args.config, overrides=overrides)

    log_cfg = config.get_section("logging")
    setup_logging(
        level=log_cfg.get("level", "INFO"),
        log_file=log_cfg.get("file"),
        max_size_mb=log_cfg.get("max_size_mb", 10),
        backup_count=log_cfg.get("backup_count", 3),
    )

    logger.info("=" * 60)
    logger.info("  HAND GESTURE TRAINER  (mode: %s)", args.mode)
    logger.info("=" * 60)

    app = GestureTrainerApp(config)
    signal.signal(signal.SIGINT, app.handle_signal)
    signal.signal(signal.SIGTERM, app.handle_signal)

    try:
        if args.mode == "train":
            asyncio.run(app.train(args.data, args.output_dir))
        elif args.mode == "run":
            asyncio.run(app.run(args.model_dir, args.data))
        else:
            output = args.output or config.collection.get("output", "data/gestures.json")
            asyncio.run(app.collect(args.labels, args.samples, output, args.append))
    except GestureTrainerError as e:
        # Already reported on the error event
        logger.debug("Exiting after %s error", e.category)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

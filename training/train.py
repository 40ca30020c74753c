#!/usr/bin/env python3
"""
Gesture classifier training.

``Trainer.train()`` is a coroutine: it yields to the event loop between
mini-batches so progress callbacks are delivered promptly and the landmark
source / inference loop keep running while a model trains.

Usage::

    # Train from an uploaded dataset and save the three artifact files
    python -m training.train --data data/gestures.json

    # With custom options
    python -m training.train --data data/gestures.json --epochs 100 --lr 0.1

After training, the following files are written to --output-dir:
    - gesture-model.json          (topology)
    - gesture-model.weights.bin   (weights)
    - gesture-model_meta.json     (dims, labels, normalization)
    - training_log.json           (loss history)
"""

import os
import sys
import json
import math
import numbers
import asyncio
import logging
import argparse
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from core.cancellation import CancellationToken
from core.errors import TrainingCancelled, TrainingError, ValidationError
from core.events import EventBus, Events
from core.types import Dataset, SessionStatus, TrainingSession, FEATURE_DIM
from models.base import GestureModel
from models.gesture_net import NeuralNetworkModel, DEFAULT_HIDDEN_UNITS
from training.dataset import DatasetBuilder

logger = logging.getLogger(__name__)


@dataclass
class TrainingOptions:
    """Hyper-parameters and progress hook for one training run."""
    epochs: int = 50
    batch_size: int = 32
    learning_rate: float = 0.2
    on_epoch: Optional[Callable[[int, float], None]] = None
    shuffle: bool = True
    seed: Optional[int] = None

    def __post_init__(self):
        for field_name in ("epochs", "batch_size", "learning_rate"):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real) \
                    or not math.isfinite(value):
                raise ValueError("%s must be a finite number, got %r" % (field_name, value))
        if int(self.epochs) != self.epochs or self.epochs < 1:
            raise ValueError("epochs must be an integer >= 1, got %r" % (self.epochs,))
        if int(self.batch_size) != self.batch_size or self.batch_size < 1:
            raise ValueError("batch_size must be an integer >= 1, got %r" % (self.batch_size,))
        if not (0.0 < float(self.learning_rate) <= 1.0):
            raise ValueError("learning_rate must be in (0, 1], got %r" % (self.learning_rate,))
        self.epochs = int(self.epochs)
        self.batch_size = int(self.batch_size)
        self.learning_rate = float(self.learning_rate)

    @classmethod
    def from_dict(cls, config: dict, on_epoch=None) -> "TrainingOptions":
        """Create options from the ``training`` config section."""
        return cls(
            epochs=config.get("epochs", 50),
            batch_size=config.get("batch_size", 32),
            learning_rate=config.get("learning_rate", 0.2),
            shuffle=config.get("shuffle", True),
            seed=config.get("seed"),
            on_epoch=on_epoch,
        )


class Trainer:
    """Runs bounded mini-batch training of a fresh GestureModel per call.

    Every call starts a new :class:`TrainingSession`; the previous one is
    only kept as ``last_session`` for logging. Nothing is persisted here.
    """

    def __init__(self, model_config: Optional[dict] = None,
                 builder: Optional[DatasetBuilder] = None,
                 model_factory: Optional[Callable[..., GestureModel]] = None,
                 event_bus: Optional[EventBus] = None):
        model_config = model_config or {}
        input_size = model_config.get("input_size", FEATURE_DIM)
        if input_size != FEATURE_DIM:
            raise ValueError("model.input_size must be %d (21 landmarks x 3), got %r"
                             % (FEATURE_DIM, input_size))
        self._hidden_units = tuple(model_config.get("hidden_units") or DEFAULT_HIDDEN_UNITS)
        self._debug = bool(model_config.get("debug", False))
        self._builder = builder or DatasetBuilder()
        self._factory = model_factory or NeuralNetworkModel
        self._bus = event_bus
        self._session = TrainingSession()

    @property
    def session(self) -> TrainingSession:
        return self._session

    async def train(self, dataset: Dataset, options: Optional[TrainingOptions] = None,
                    cancel_token: Optional[CancellationToken] = None) -> GestureModel:
        """Train a new model on ``dataset``.

        Raises:
            ValidationError: a sample is malformed (nothing was trained).
            TrainingCancelled: ``cancel_token`` fired between batches.
            TrainingError: the numeric routine failed; the original
                exception is chained as ``__cause__``.
        """
        options = options or TrainingOptions()
        session = TrainingSession()
        self._session = session
        session.begin()

        try:
            model = await self._run(dataset, options, cancel_token, session)
        except (ValidationError, TrainingCancelled) as e:
            status = SessionStatus.CANCELLED if isinstance(e, TrainingCancelled) else SessionStatus.FAILED
            session.finish(status, e)
            self._emit(Events.TRAINING_FAILED, error=e, session=session)
            raise
        except Exception as e:
            logger.error("Training failed at epoch %d: %s", session.epoch + 1, e)
            session.finish(SessionStatus.FAILED, e)
            error = TrainingError(str(e))
            self._emit(Events.TRAINING_FAILED, error=error, session=session)
            raise error from e

        session.finish(SessionStatus.COMPLETED)
        logger.info("Training complete: %d epochs in %.1fs, final loss %.4f",
                    session.epoch, session.elapsed,
                    session.loss_history[-1] if session.loss_history else float("nan"))
        self._emit(Events.TRAINING_COMPLETED, session=session)
        return model

    async def _run(self, dataset, options, cancel_token, session) -> GestureModel:
        examples = self._builder.format(dataset)
        labels = dataset.labels
        if not examples:
            raise ValidationError("Dataset has no samples")

        model = self._factory(labels, input_dim=FEATURE_DIM, hidden_units=self._hidden_units,
                              seed=options.seed, debug=self._debug)
        model.set_learning_rate(options.learning_rate)

        features, targets = self._builder.to_arrays(examples, labels)
        features = model.fit_normalization(features)

        total = len(targets)
        rng = np.random.default_rng(options.seed)
        logger.info("Starting training: %d samples, %d classes, %d epochs, batch_size=%d, lr=%.4f",
                    total, len(labels), options.epochs, options.batch_size, options.learning_rate)

        for epoch in range(1, options.epochs + 1):
            order = rng.permutation(total) if options.shuffle else np.arange(total)
            running_loss = 0.0

            for start in range(0, total, options.batch_size):
                if cancel_token is not None and cancel_token.cancelled:
                    raise TrainingCancelled("Training cancelled at epoch %d: %s"
                                            % (epoch, cancel_token.reason))
                batch = order[start:start + options.batch_size]
                loss = model.train_batch(features[batch], targets[batch])
                if not math.isfinite(loss):
                    raise FloatingPointError("loss became %r at epoch %d" % (loss, epoch))
                running_loss += loss * len(batch)
                await asyncio.sleep(0)

            epoch_loss = running_loss / total
            session.record_epoch(epoch, epoch_loss)
            if self._debug or epoch <= 3 or epoch % 5 == 0 or epoch == options.epochs:
                logger.info("Epoch %3d/%d | loss=%.4f", epoch, options.epochs, epoch_loss)
            else:
                logger.debug("Epoch %3d/%d | loss=%.4f", epoch, options.epochs, epoch_loss)

            if options.on_epoch is not None:
                options.on_epoch(epoch, epoch_loss)
            self._emit(Events.TRAINING_EPOCH, epoch=epoch, loss=epoch_loss)
            await asyncio.sleep(0)

        return model

    def _emit(self, event_name, **kwargs):
        if self._bus is not None:
            self._bus.emit(event_name, **kwargs)


# =============================================================================
# Command line
# =============================================================================

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Train a gesture classifier from an upload")
    parser.add_argument("--data", required=True,
                        help="Training-data upload (JSON: label -> {samples: [...]})")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--output-dir", default=None,
                        help="Directory for the saved model artifacts")
    parser.add_argument("--name", default=None, help="Artifact base name")
    parser.add_argument("--epochs", type=int, default=None, help="Number of training epochs")
    parser.add_argument("--batch-size", type=int, default=None, help="Training batch size")
    parser.add_argument("--lr", type=float, default=None, help="Learning rate")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducibility")
    parser.add_argument("--debug", action="store_true", help="Log every epoch")
    return parser.parse_args(argv)


def run_training(args, config) -> int:
    """Train from ``args.data`` and write artifacts; returns an exit code."""
    from models.artifact_store import ModelArtifactStore

    training_cfg = dict(config.training)
    overrides = {"epochs": args.epochs, "batch_size": args.batch_size,
                 "learning_rate": args.lr, "seed": args.seed}
    training_cfg.update({k: v for k, v in overrides.items() if v is not None})

    model_cfg = dict(config.model)
    if args.debug:
        model_cfg["debug"] = True

    artifacts_cfg = config.artifacts
    output_dir = args.output_dir or artifacts_cfg.get("directory", "models/weights")
    name = args.name or artifacts_cfg.get("name", "gesture-model")

    try:
        dataset = DatasetBuilder().from_json(args.data)
        options = TrainingOptions.from_dict(training_cfg)
        trainer = Trainer(model_config=model_cfg)
    except (ValidationError, ValueError) as e:
        logger.error("Invalid training input: %s", e)
        return 2

    for label, count in DatasetBuilder.class_counts(dataset).items():
        logger.info("  %-15s %d samples", label, count)

    try:
        model = asyncio.run(trainer.train(dataset, options))
    except (TrainingError, ValidationError) as e:
        logger.error("Training failed: %s", e)
        return 1

    store = ModelArtifactStore(name=name)
    store.write(model, output_dir, name)

    log_path = os.path.join(output_dir, "training_log.json")
    with open(log_path, "w") as f:
        log = trainer.session.to_dict()
        log.update({
            "total_samples": dataset.sample_count,
            "class_names": dataset.labels,
            "epochs": options.epochs,
            "batch_size": options.batch_size,
            "learning_rate": options.learning_rate,
        })
        json.dump(log, f, indent=2)
    logger.info("Training log saved to: %s", log_path)
    return 0


def main(argv=None):
    from modules.utils.config import Config
    from modules.utils.logger import setup_logging

    args = parse_args(argv)
    config = Config().load(config_path=args.config)
    log_cfg = config.get_section("logging")
    setup_logging(level="DEBUG" if args.debug else log_cfg.get("level", "INFO"),
                  log_file=log_cfg.get("file"))
    sys.exit(run_training(args, config))


if __name__ == "__main__":
    main()

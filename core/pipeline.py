"""
Gesture training/inference orchestrator.

Wires the stages together:

    upload -> DatasetBuilder -> Trainer ----\
                                             > ModelSlot -> InferenceLoop -> label events
    artifact files -> ModelArtifactStore ---/      |
                                                   \-> ModelArtifactStore (save)

Every failure is reported once on the ``error`` event with its category
and re-raised to the caller. A failed train or load never touches the
current model, and a train/load that finishes after a newer one is
discarded by the ModelSlot.
"""

import asyncio
import logging
from typing import Mapping, Optional, Sequence, Union

from core.cancellation import CancellationToken
from core.errors import ArtifactError, GestureTrainerError, ValidationError
from core.events import EventBus, Events
from core.model_slot import ModelSlot
from core.types import Dataset
from models.artifact_store import ModelArtifactStore
from modules.recognition.inference_loop import InferenceLoop
from training.dataset import DatasetBuilder
from training.train import Trainer, TrainingOptions

logger = logging.getLogger(__name__)


class GesturePipeline:
    """Owns the dataset, the current model and the inference loop.

    Usage::

        pipeline = GesturePipeline(slot, bus, config.as_dict())
        pipeline.load_dataset("data/gestures.json")
        await pipeline.train()
        pipeline.save("models/weights")
        pipeline.start_inference()
    """

    def __init__(self, source, event_bus: Optional[EventBus] = None, config: Optional[dict] = None,
                 store: Optional[ModelArtifactStore] = None, trainer: Optional[Trainer] = None):
        config = config or {}
        self._bus = event_bus or EventBus()
        self._training_cfg = dict(config.get("training", {}))
        self._artifacts_cfg = dict(config.get("artifacts", {}))

        self._builder = DatasetBuilder()
        self._models = ModelSlot()
        self._store = store or ModelArtifactStore(name=self._artifacts_cfg.get("name", "gesture-model"))
        self._trainer = trainer or Trainer(model_config=config.get("model", {}),
                                           builder=self._builder, event_bus=self._bus)
        self._loop = InferenceLoop(
            source, self._models, self._bus,
            interval_ms=config.get("inference", {}).get("interval_ms", 125),
        )

        self._dataset: Optional[Dataset] = None
        self._train_token: Optional[CancellationToken] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def dataset(self) -> Optional[Dataset]:
        return self._dataset

    @property
    def models(self) -> ModelSlot:
        return self._models

    @property
    def current_model(self):
        artifact = self._models.current
        return artifact.model if artifact is not None else None

    @property
    def inference(self) -> InferenceLoop:
        return self._loop

    @property
    def trainer(self) -> Trainer:
        return self._trainer

    # ------------------------------------------------------------------
    # Dataset
    # ------------------------------------------------------------------

    def load_dataset(self, source) -> Dataset:
        """Load a training-data upload (path, JSON text or decoded dict).

        On failure the previously loaded dataset is kept.
        """
        try:
            if isinstance(source, dict):
                dataset = self._builder.parse(source)
            else:
                dataset = self._builder.from_json(source)
        except ValidationError as e:
            self._report(e)
            raise
        self._dataset = dataset
        logger.info("Data loaded: %d classes", len(dataset))
        return dataset

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def training_options(self, on_epoch=None, **overrides) -> TrainingOptions:
        cfg = dict(self._training_cfg)
        cfg.update({k: v for k, v in overrides.items() if v is not None})
        return TrainingOptions.from_dict(cfg, on_epoch=on_epoch)

    async def train(self, options: Optional[TrainingOptions] = None):
        """Train on the loaded dataset and adopt the result.

        Returns:
            The trained model (adopted unless a newer load/train already won).
        """
        if self._dataset is None:
            error = ValidationError("No training data loaded")
            self._report(error)
            raise error

        options = options or self.training_options()
        version = self._models.reserve()
        token = CancellationToken()
        self._train_token = token
        try:
            model = await self._trainer.train(self._dataset, options, token)
        except GestureTrainerError as e:
            self._report(e)
            raise
        finally:
            if self._train_token is token:
                self._train_token = None

        if self._models.adopt(model, version, source="train"):
            self._bus.emit(Events.MODEL_ADOPTED, version=version, source="train",
                           labels=list(model.labels))
        return model

    def cancel_training(self, reason: str = "cancelled by user") -> bool:
        if self._train_token is None:
            return False
        self._train_token.cancel(reason)
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_payloads(self) -> dict:
        artifact = self._models.current
        if artifact is None:
            error = ArtifactError("No model to save")
            self._report(error)
            raise error
        return self._store.save(artifact.model)

    def save(self, directory: Optional[str] = None, name: Optional[str] = None) -> list:
        """Write the current model's three artifact files."""
        artifact = self._models.current
        if artifact is None:
            error = ArtifactError("No model to save")
            self._report(error)
            raise error
        directory = directory or self._artifacts_cfg.get("directory", "models/weights")
        paths = self._store.write(artifact.model, directory, name)
        self._bus.emit(Events.MODEL_SAVED, paths=paths, version=artifact.version)
        return paths

    async def load(self, source: Union[str, Sequence[str], Mapping[str, bytes]]):
        """Load a model from a directory, a list of files or named payloads.

        The previous model stays current if anything goes wrong.
        """
        version = self._models.reserve()
        loop = asyncio.get_running_loop()
        try:
            if isinstance(source, Mapping):
                payloads = source
            else:
                payloads = await loop.run_in_executor(None, self._store.read, source)
            model = await loop.run_in_executor(None, self._store.load, payloads)
        except ArtifactError as e:
            self._bus.emit(Events.MODEL_LOAD_FAILED, error=e)
            self._report(e)
            raise

        if self._models.adopt(model, version, source="load"):
            self._bus.emit(Events.MODEL_ADOPTED, version=version, source="load",
                           labels=list(model.labels))
        return model

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def start_inference(self) -> bool:
        if self._models.current is None:
            logger.warning("Starting inference without a model; ticks are no-ops until one is adopted")
        return self._loop.start()

    def stop_inference(self):
        self._loop.stop()

    def toggle_inference(self) -> bool:
        return self._loop.toggle()

    async def shutdown(self):
        self.cancel_training("shutdown")
        self._loop.stop()
        await self._loop.wait_closed()

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def _report(self, error: GestureTrainerError):
        logger.error("%s error: %s", error.category.capitalize(), error)
        self._bus.emit(Events.ERROR, error=error, category=error.category)

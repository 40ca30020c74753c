"""
Tests for Model Artifact Persistence
====================================
"""

import asyncio
import json

import numpy as np
import pytest

from conftest import create_mock_landmarks, create_upload, to_sample
from core.errors import ArtifactError
from models.artifact_store import ModelArtifactStore
from models.gesture_net import NeuralNetworkModel
from training.dataset import DatasetBuilder, flatten
from training.train import Trainer, TrainingOptions


@pytest.fixture(scope="module")
def trained_model():
    dataset = DatasetBuilder().parse(create_upload(samples_per_class=4))
    options = TrainingOptions(epochs=5, batch_size=2, seed=0)
    return asyncio.run(Trainer().train(dataset, options))


@pytest.fixture
def store():
    return ModelArtifactStore()


class TestSave:
    """Test suite for serialisation."""

    def test_three_named_payloads(self, store, trained_model):
        payloads = store.save(trained_model)

        assert set(payloads) == {
            "gesture-model.json",
            "gesture-model.weights.bin",
            "gesture-model_meta.json",
        }

    def test_metadata_payload(self, store, trained_model):
        meta = json.loads(store.save(trained_model)["gesture-model_meta.json"])

        assert meta["inputDim"] == 63
        assert meta["outputDim"] == 2
        assert meta["labels"] == ["open", "closed"]

    def test_weight_blob_size(self, store, trained_model):
        blob = store.save(trained_model)["gesture-model.weights.bin"]
        # 63 -> 16 -> 2 dense layers with biases
        expected = 63 * 16 + 16 + 16 * 2 + 2
        assert len(blob) == expected * 4

    def test_topology_manifest(self, store, trained_model):
        topology = json.loads(store.save(trained_model)["gesture-model.json"])
        manifest = topology["weightsManifest"][0]

        assert manifest["paths"] == ["gesture-model.weights.bin"]
        assert all(w["dtype"] == "float32" for w in manifest["weights"])

    def test_custom_name(self, store, trained_model):
        payloads = store.save(trained_model, name="hands")
        assert "hands_meta.json" in payloads


class TestLoad:
    """Test suite for rebuilding models from payloads."""

    def test_round_trip_predictions(self, store, trained_model):
        restored = store.load(store.save(trained_model))
        features = flatten(to_sample(create_mock_landmarks(0.3, seed=11)))

        assert restored.labels == trained_model.labels
        original = [conf for _, conf in trained_model.predict(features)]
        again = [conf for _, conf in restored.predict(features)]
        np.testing.assert_allclose(again, original, rtol=1e-5, atol=1e-6)

    def test_write_and_read_directory(self, store, trained_model, tmp_path):
        paths = store.write(trained_model, str(tmp_path))

        assert len(paths) == 3
        assert not list(tmp_path.glob("*.tmp"))
        restored = store.load(store.read(str(tmp_path)))
        assert restored.labels == ["open", "closed"]

    def test_read_file_list(self, store, trained_model, tmp_path):
        paths = store.write(trained_model, str(tmp_path))
        restored = store.load(store.read(paths))
        assert restored.output_dim == 2

    def test_missing_directory(self, store, tmp_path):
        with pytest.raises(ArtifactError):
            store.read(str(tmp_path / "nope"))

    def test_two_payloads_is_insufficient(self, store, trained_model):
        payloads = store.save(trained_model)
        del payloads["gesture-model.json"]

        with pytest.raises(ArtifactError) as excinfo:
            store.load(payloads)
        assert "insufficient payloads" in str(excinfo.value)

    def test_metadata_missing(self, store, trained_model):
        payloads = store.save(trained_model)
        payloads["gesture-model.info.json"] = payloads.pop("gesture-model_meta.json")

        with pytest.raises(ArtifactError) as excinfo:
            store.load(payloads)
        assert "metadata missing" in str(excinfo.value)

    def test_metadata_incomplete(self, store, trained_model):
        payloads = store.save(trained_model)
        payloads["gesture-model_meta.json"] = json.dumps({"inputDim": 63}).encode()

        with pytest.raises(ArtifactError) as excinfo:
            store.load(payloads)
        assert "metadata incomplete" in str(excinfo.value)

    def test_output_dim_mismatch(self, store, trained_model):
        payloads = store.save(trained_model)
        meta = json.loads(payloads["gesture-model_meta.json"])
        meta["outputDim"] = 3
        meta["labels"] = ["open", "closed", "point"]
        payloads["gesture-model_meta.json"] = json.dumps(meta).encode()

        with pytest.raises(ArtifactError) as excinfo:
            store.load(payloads)
        assert "dimension mismatch" in str(excinfo.value)

    def test_input_dim_mismatch(self, store, trained_model):
        payloads = store.save(trained_model)
        meta = json.loads(payloads["gesture-model_meta.json"])
        meta["inputDim"] = 42
        payloads["gesture-model_meta.json"] = json.dumps(meta).encode()

        with pytest.raises(ArtifactError) as excinfo:
            store.load(payloads)
        assert "dimension mismatch" in str(excinfo.value)

    def test_truncated_weights(self, store, trained_model):
        payloads = store.save(trained_model)
        payloads["gesture-model.weights.bin"] = payloads["gesture-model.weights.bin"][:-3]

        with pytest.raises(ArtifactError):
            store.load(payloads)

    def test_invalid_metadata_json(self, store, trained_model):
        payloads = store.save(trained_model)
        payloads["gesture-model_meta.json"] = b"{broken"

        with pytest.raises(ArtifactError):
            store.load(payloads)

    def test_untrained_model_round_trip(self, store):
        model = NeuralNetworkModel(["a", "b", "c"], seed=3)
        restored = store.load(store.save(model))

        for a, b in zip(model.get_parameters(), restored.get_parameters()):
            np.testing.assert_array_equal(a, b)

    def test_duplicate_labels_in_metadata(self, store, trained_model):
        payloads = store.save(trained_model)
        meta = json.loads(payloads["gesture-model_meta.json"])
        meta["labels"] = ["a", "a"]
        payloads["gesture-model_meta.json"] = json.dumps(meta).encode()

        with pytest.raises(ArtifactError) as excinfo:
            store.load(payloads)
        assert "labels must be unique" in str(excinfo.value)

    def test_non_numeric_normalization_bounds(self, store, trained_model):
        payloads = store.save(trained_model)
        meta = json.loads(payloads["gesture-model_meta.json"])
        meta["inputMin"] = ["x"] * 63
        payloads["gesture-model_meta.json"] = json.dumps(meta).encode()

        with pytest.raises(ArtifactError) as excinfo:
            store.load(payloads)
        assert isinstance(excinfo.value.__cause__, ValueError)

    def test_scalar_normalization_bounds(self, store, trained_model):
        payloads = store.save(trained_model)
        meta = json.loads(payloads["gesture-model_meta.json"])
        meta["inputMax"] = 1.0
        payloads["gesture-model_meta.json"] = json.dumps(meta).encode()

        with pytest.raises(ArtifactError):
            store.load(payloads)


class TestDirectoryLayouts:
    """Test suite for picking the right files out of a shared directory."""

    def test_training_log_next_to_artifacts(self, tmp_path):
        model = NeuralNetworkModel(["open", "closed"], hidden_units=(32,), seed=4)
        store = ModelArtifactStore(name="zmodel")
        store.write(model, str(tmp_path))
        (tmp_path / "training_log.json").write_text(json.dumps({"epochs_trained": 5}))

        restored = store.load(store.read(str(tmp_path)))

        assert restored.hidden_units == (32,)
        for a, b in zip(model.get_parameters(), restored.get_parameters()):
            np.testing.assert_array_equal(a, b)

    def test_two_models_in_one_directory(self, tmp_path):
        store = ModelArtifactStore()
        alpha = NeuralNetworkModel(["a", "b", "c"], seed=1)
        beta = NeuralNetworkModel(["open", "closed"], seed=2)
        store.write(alpha, str(tmp_path), name="alpha")
        store.write(beta, str(tmp_path), name="beta")
        (tmp_path / "alpha_meta.json").unlink()

        restored = store.load(store.read(str(tmp_path)))

        assert restored.labels == ["open", "closed"]
        for a, b in zip(beta.get_parameters(), restored.get_parameters()):
            np.testing.assert_array_equal(a, b)

    def test_store_name_selects_metadata(self, tmp_path):
        alpha = NeuralNetworkModel(["a", "b", "c"], seed=1)
        beta = NeuralNetworkModel(["open", "closed"], seed=2)
        ModelArtifactStore(name="alpha").write(alpha, str(tmp_path))
        ModelArtifactStore(name="beta").write(beta, str(tmp_path))

        store = ModelArtifactStore(name="beta")
        restored = store.load(store.read(str(tmp_path)))

        assert restored.labels == ["open", "closed"]

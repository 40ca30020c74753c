"""
Three-part model artifact persistence.

A saved model is three independently named payloads::

    gesture-model.json          topology (layers + weights manifest), JSON
    gesture-model.weights.bin   little-endian float32 parameters, concatenated
    gesture-model_meta.json     {inputDim, outputDim, labels, inputMin, inputMax}

On load the metadata payload (found by the ``_meta`` marker in its name) is
the source of truth: dims and labels come from it, the network is rebuilt
from it, and only then is the weight blob checked against the rebuilt
parameter count and attached.
"""

import os
import json
import logging
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from core.errors import ArtifactError
from core.types import FEATURE_DIM
from models.base import GestureModel
from models.gesture_net import NeuralNetworkModel, DEFAULT_HIDDEN_UNITS

logger = logging.getLogger(__name__)

METADATA_MARKER = "_meta"
WEIGHTS_SUFFIX = ".bin"
REQUIRED_PAYLOADS = 3
WEIGHT_DTYPE = np.dtype("<f4")

Payload = Union[bytes, str]


def _as_bytes(value: Payload) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def _default_factory(labels, input_dim, hidden_units):
    return NeuralNetworkModel(labels, input_dim=input_dim, hidden_units=hidden_units)


class ModelArtifactStore:
    """Serialises GestureModels to three payloads and rebuilds them.

    Usage::

        store = ModelArtifactStore()
        payloads = store.save(model)            # {name: bytes} x3
        store.write(model, "models/weights")    # same, as files
        model = store.load(store.read("models/weights"))
    """

    def __init__(self, name: str = "gesture-model",
                 model_factory: Optional[Callable[..., GestureModel]] = None):
        self._name = name
        self._factory = model_factory or _default_factory

    # ------------------------------------------------------------------
    # Names
    # ------------------------------------------------------------------

    def payload_names(self, name: Optional[str] = None) -> Dict[str, str]:
        base = name or self._name
        return {
            "topology": "%s.json" % base,
            "weights": "%s.weights%s" % (base, WEIGHTS_SUFFIX),
            "metadata": "%s%s.json" % (base, METADATA_MARKER),
        }

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, model: GestureModel, name: Optional[str] = None) -> Dict[str, bytes]:
        """Serialise ``model`` into its topology, weights and metadata payloads."""
        names = self.payload_names(name)

        arrays = model.get_parameters()
        blob = b"".join(np.ascontiguousarray(a, dtype=WEIGHT_DTYPE).tobytes() for a in arrays)

        topology = {
            "format": "layers-model",
            "modelTopology": model.topology(),
            "weightsManifest": [{
                "paths": [names["weights"]],
                "weights": [
                    {"name": param_name, "shape": list(shape), "dtype": "float32"}
                    for param_name, shape in model.parameter_shapes()
                ],
            }],
        }

        payloads = {
            names["topology"]: json.dumps(topology, indent=2).encode("utf-8"),
            names["weights"]: blob,
            names["metadata"]: json.dumps(model.metadata(), indent=2).encode("utf-8"),
        }
        logger.debug("Serialised model: %d labels, %d weight bytes",
                     model.output_dim, len(blob))
        return payloads

    def write(self, model: GestureModel, directory: str, name: Optional[str] = None) -> List[str]:
        """Save ``model`` as three files in ``directory``.

        The save only counts as successful if this returns; an OSError on
        any of the three files propagates to the caller.
        """
        os.makedirs(directory, exist_ok=True)
        paths = []
        for filename, data in self.save(model, name).items():
            path = os.path.join(directory, filename)
            tmp_path = path + ".tmp"
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
            paths.append(path)
        logger.info("Model saved to %s (%s)", directory, ", ".join(os.path.basename(p) for p in paths))
        return paths

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def read(self, source: Union[str, Sequence[str]]) -> Dict[str, bytes]:
        """Collect payloads from a directory or an explicit list of files."""
        if isinstance(source, (str, os.PathLike)):
            directory = str(source)
            if not os.path.isdir(directory):
                raise ArtifactError("Artifact directory not found: %s" % directory)
            paths = [os.path.join(directory, f) for f in sorted(os.listdir(directory))
                     if f.endswith(".json") or f.endswith(WEIGHTS_SUFFIX)]
        else:
            paths = list(source)

        payloads = {}
        for path in paths:
            try:
                with open(path, "rb") as f:
                    payloads[os.path.basename(path)] = f.read()
            except OSError as e:
                raise ArtifactError("Cannot read artifact %s: %s" % (path, e)) from e
        return payloads

    def load(self, payloads: Mapping[str, Payload]) -> GestureModel:
        """Rebuild a model from its named payloads.

        Raises:
            ArtifactError: insufficient payloads, metadata missing or
                unparseable, or weights that do not fit the metadata.
        """
        if len(payloads) < REQUIRED_PAYLOADS:
            raise ArtifactError(
                "insufficient payloads: expected %d (topology, weights, metadata), got %d"
                % (REQUIRED_PAYLOADS, len(payloads))
            )

        meta_names = [n for n in payloads if METADATA_MARKER in n]
        if not meta_names:
            raise ArtifactError("metadata missing: no payload name contains %r" % METADATA_MARKER)
        preferred = self.payload_names()["metadata"]
        meta_name = preferred if preferred in meta_names else meta_names[0]

        metadata = self._parse_json(meta_name, payloads[meta_name], "metadata")
        input_dim, output_dim, labels = self._check_metadata(metadata)

        weights_name, topology_name = self._companions(payloads, meta_name)
        if weights_name is None:
            raise ArtifactError("weights missing: no payload ending in %r" % WEIGHTS_SUFFIX)
        hidden_units = self._hidden_units(topology_name, payloads.get(topology_name), output_dim)

        try:
            model = self._factory(labels, input_dim, hidden_units)
        except (ValueError, TypeError) as e:
            raise ArtifactError("metadata invalid: %s" % e) from e
        arrays = self._split_weights(payloads[weights_name], model, output_dim, hidden_units)
        try:
            model.set_parameters(arrays)
        except (ValueError, TypeError, RuntimeError) as e:
            raise ArtifactError("dimension mismatch: %s" % e) from e

        input_min = metadata.get("inputMin")
        input_max = metadata.get("inputMax")
        if input_min is not None and input_max is not None:
            if not isinstance(input_min, list) or not isinstance(input_max, list) \
                    or len(input_min) != input_dim or len(input_max) != input_dim:
                raise ArtifactError("dimension mismatch: normalization bounds do not match inputDim=%d"
                                    % input_dim)
            try:
                model.set_normalization(input_min, input_max)
            except (ValueError, TypeError) as e:
                raise ArtifactError("metadata invalid: normalization bounds: %s" % e) from e

        logger.info("Model loaded from %s (%d labels: %s)", meta_name, output_dim, labels)
        return model

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _companions(payloads: Mapping[str, Payload], meta_name: str):
        """Weights and topology payload names belonging to ``meta_name``.

        Matched on the shared base name first, so other models or log files
        next to the artifacts are ignored.
        """
        base = meta_name[:meta_name.rfind(METADATA_MARKER)]
        weights_name = "%s.weights%s" % (base, WEIGHTS_SUFFIX)
        topology_name = "%s.json" % base

        if weights_name not in payloads:
            weights_name = next((n for n in payloads
                                 if n != meta_name and n.endswith(WEIGHTS_SUFFIX)), None)
        if topology_name not in payloads:
            topology_name = next((n for n in payloads
                                  if n not in (meta_name, weights_name)
                                  and METADATA_MARKER not in n and n.startswith(base)), None)
        return weights_name, topology_name

    @staticmethod
    def _parse_json(name: str, payload: Payload, kind: str) -> dict:
        try:
            document = json.loads(_as_bytes(payload).decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ArtifactError("%s payload %s is not valid JSON: %s" % (kind, name, e)) from e
        if not isinstance(document, dict):
            raise ArtifactError("%s payload %s must be a JSON object" % (kind, name))
        return document

    @staticmethod
    def _check_metadata(metadata: dict):
        try:
            input_dim = int(metadata["inputDim"])
            output_dim = int(metadata["outputDim"])
            labels = [str(label) for label in metadata["labels"]]
        except (KeyError, TypeError, ValueError) as e:
            raise ArtifactError("metadata incomplete: needs inputDim, outputDim, labels (%s)" % e) from e

        if input_dim != FEATURE_DIM:
            raise ArtifactError("dimension mismatch: metadata inputDim=%d, expected %d"
                                % (input_dim, FEATURE_DIM))
        if output_dim < 1 or len(labels) != output_dim:
            raise ArtifactError("dimension mismatch: metadata outputDim=%d but %d labels"
                                % (output_dim, len(labels)))
        if len(set(labels)) != len(labels):
            raise ArtifactError("metadata invalid: labels must be unique, got %r" % (labels,))
        return input_dim, output_dim, labels

    def _hidden_units(self, name, payload, output_dim) -> tuple:
        """Hidden layer widths from the topology payload; dims come from metadata."""
        if payload is None:
            return DEFAULT_HIDDEN_UNITS
        topology = self._parse_json(name, payload, "topology")
        model_topology = topology.get("modelTopology", topology)
        layers = (model_topology.get("config") or {}).get("layers") or []
        units = []
        for layer in layers:
            try:
                units.append(int(layer["config"]["units"]))
            except (KeyError, TypeError, ValueError) as e:
                raise ArtifactError("topology payload %s has a malformed layer: %s" % (name, e)) from e
        if not units:
            return DEFAULT_HIDDEN_UNITS
        if units[-1] != output_dim:
            logger.warning("Topology output units (%d) differ from metadata outputDim (%d); "
                           "using metadata", units[-1], output_dim)
        return tuple(units[:-1])

    @staticmethod
    def _split_weights(payload: Payload, model: GestureModel, output_dim: int,
                       hidden_units) -> List[np.ndarray]:
        blob = _as_bytes(payload)
        shapes = [shape for _, shape in model.parameter_shapes()]
        expected = sum(int(np.prod(shape)) for shape in shapes)

        if len(blob) % WEIGHT_DTYPE.itemsize != 0:
            raise ArtifactError("dimension mismatch: weight blob of %d bytes is not float32-aligned"
                                % len(blob))
        actual = len(blob) // WEIGHT_DTYPE.itemsize
        if actual != expected:
            last_hidden = hidden_units[-1] if hidden_units else FEATURE_DIM
            head = expected - output_dim * (last_hidden + 1)
            implied = (actual - head) / float(last_hidden + 1)
            raise ArtifactError(
                "dimension mismatch: metadata declares outputDim=%d (%d weights) but the "
                "weight blob holds %d weights (implies ~%.1f outputs)"
                % (output_dim, expected, actual, implied)
            )

        flat = np.frombuffer(blob, dtype=WEIGHT_DTYPE)
        arrays, offset = [], 0
        for shape in shapes:
            size = int(np.prod(shape))
            arrays.append(flat[offset:offset + size].reshape(shape).astype(np.float32))
            offset += size
        return arrays

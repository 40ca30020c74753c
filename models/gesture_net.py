"""
GestureNet: small MLP for per-session gesture classification.

Architecture:
    Input  : 63 features (21 landmarks x 3, min-max normalized)
    Hidden : Dense(16), ReLU   (configurable via ``hidden_units``)
    Output : num_classes (softmax applied at inference / inside the loss)

No BatchNorm or Dropout: sessions are trained on a handful of samples,
often with batch_size=1, and predictions must be deterministic so a
saved and reloaded model classifies identically.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim

from core.types import FEATURE_DIM
from models.base import GestureModel

logger = logging.getLogger(__name__)

DEFAULT_HIDDEN_UNITS = (16,)


class GestureNet(nn.Module):
    """Plain feed-forward classifier producing raw logits."""

    def __init__(self, input_dim=FEATURE_DIM, num_classes=2,
                 hidden_units: Sequence[int] = DEFAULT_HIDDEN_UNITS):
        super(GestureNet, self).__init__()

        layers = []
        in_features = input_dim
        for units in hidden_units:
            layers.append(nn.Linear(in_features, units))
            layers.append(nn.ReLU(inplace=True))
            in_features = units
        self.features = nn.Sequential(*layers)
        self.classifier = nn.Linear(in_features, num_classes)

        self._init_weights()

    def _init_weights(self):
        for m in self.modules():
            if isinstance(m, nn.Linear):
                nn.init.kaiming_normal_(m.weight, nonlinearity="relu")
                if m.bias is not None:
                    nn.init.zeros_(m.bias)

    def forward(self, x):
        """Forward pass.

        Args:
            x: Tensor of shape (batch, input_dim)

        Returns:
            Tensor of shape (batch, num_classes), raw logits
        """
        return self.classifier(self.features(x))

    def predict_proba(self, x):
        self.eval()
        with torch.no_grad():
            return torch.softmax(self.forward(x), dim=1)


class NeuralNetworkModel(GestureModel):
    """GestureModel backed by a PyTorch GestureNet trained with SGD."""

    backend_name = "pytorch"

    def __init__(self, labels: Sequence[str], input_dim: int = FEATURE_DIM,
                 hidden_units: Sequence[int] = DEFAULT_HIDDEN_UNITS,
                 learning_rate: float = 0.2, seed: Optional[int] = None,
                 debug: bool = False):
        if len(labels) < 1:
            raise ValueError("A classifier needs at least one label")
        if len(set(labels)) != len(labels):
            raise ValueError("Labels must be unique: %r" % (list(labels),))

        self._labels = list(labels)
        self._input_dim = int(input_dim)
        self._hidden_units = tuple(int(u) for u in hidden_units)
        self._debug = debug

        if seed is not None:
            torch.manual_seed(seed)
        self._net = GestureNet(self._input_dim, len(self._labels), self._hidden_units)
        self._criterion = nn.CrossEntropyLoss()
        self._learning_rate = learning_rate
        self._optimizer = optim.SGD(self._net.parameters(), lr=learning_rate)

        # Identity scaling until fit_normalization() or a load says otherwise
        self._input_min = np.zeros(self._input_dim, dtype=np.float32)
        self._input_max = np.ones(self._input_dim, dtype=np.float32)

        if debug:
            logger.info("GestureNet %d -> %s -> %d (%d parameters)",
                        self._input_dim, list(self._hidden_units), len(self._labels),
                        sum(p.numel() for p in self._net.parameters()))

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def labels(self) -> List[str]:
        return list(self._labels)

    @property
    def input_dim(self) -> int:
        return self._input_dim

    @property
    def hidden_units(self) -> Tuple[int, ...]:
        return self._hidden_units

    @property
    def network(self) -> GestureNet:
        return self._net

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def fit_normalization(self, features: np.ndarray) -> np.ndarray:
        features = np.asarray(features, dtype=np.float32)
        if features.ndim != 2 or features.shape[1] != self._input_dim:
            raise ValueError("Expected (n, %d) features, got %s"
                             % (self._input_dim, features.shape))
        self._input_min = features.min(axis=0)
        self._input_max = features.max(axis=0)
        return self.normalize(features)

    def set_normalization(self, input_min, input_max):
        self._input_min = np.asarray(input_min, dtype=np.float32).reshape(self._input_dim)
        self._input_max = np.asarray(input_max, dtype=np.float32).reshape(self._input_dim)

    def normalize(self, features: np.ndarray) -> np.ndarray:
        features = np.asarray(features, dtype=np.float32)
        span = self._input_max - self._input_min
        # Constant features carry no information; map them to 0
        safe_span = np.where(span > 0, span, 1.0).astype(np.float32)
        scaled = (features - self._input_min) / safe_span
        return np.where(span > 0, scaled, 0.0).astype(np.float32)

    # ------------------------------------------------------------------
    # Training / inference
    # ------------------------------------------------------------------

    def set_learning_rate(self, learning_rate: float):
        self._learning_rate = learning_rate
        for group in self._optimizer.param_groups:
            group["lr"] = learning_rate

    def train_batch(self, features: np.ndarray, targets: np.ndarray) -> float:
        self._net.train()
        inputs = torch.from_numpy(np.ascontiguousarray(features, dtype=np.float32))
        labels = torch.from_numpy(np.ascontiguousarray(targets, dtype=np.int64))

        self._optimizer.zero_grad()
        loss = self._criterion(self._net(inputs), labels)
        loss.backward()
        self._optimizer.step()
        return float(loss.item())

    def predict_proba(self, features: np.ndarray) -> np.ndarray:
        features = np.asarray(features, dtype=np.float32)
        if features.ndim == 1:
            features = features.reshape(1, -1)
        if features.shape[1] != self._input_dim:
            raise ValueError("Expected %d features, got %d" % (self._input_dim, features.shape[1]))
        tensor = torch.from_numpy(self.normalize(features))
        return self._net.predict_proba(tensor).cpu().numpy()

    # ------------------------------------------------------------------
    # Serialisation hooks used by ModelArtifactStore
    # ------------------------------------------------------------------

    def topology(self) -> dict:
        layers = []
        in_features = self._input_dim
        for units in self._hidden_units:
            layers.append({
                "class_name": "Dense",
                "config": {"units": units, "activation": "relu",
                           "batch_input_shape": [None, in_features]},
            })
            in_features = units
        layers.append({
            "class_name": "Dense",
            "config": {"units": len(self._labels), "activation": "softmax",
                       "batch_input_shape": [None, in_features]},
        })
        return {
            "class_name": "Sequential",
            "backend": self.backend_name,
            "config": {"name": "gesture_net", "layers": layers},
        }

    def metadata(self) -> dict:
        return {
            "inputDim": self._input_dim,
            "outputDim": len(self._labels),
            "labels": list(self._labels),
            "inputMin": [float(v) for v in self._input_min],
            "inputMax": [float(v) for v in self._input_max],
        }

    def parameter_shapes(self) -> List[Tuple[str, Tuple[int, ...]]]:
        return [(name, tuple(tensor.shape)) for name, tensor in self._net.state_dict().items()]

    def get_parameters(self) -> List[np.ndarray]:
        return [tensor.detach().cpu().numpy().astype(np.float32)
                for tensor in self._net.state_dict().values()]

    def set_parameters(self, arrays: Sequence[np.ndarray]):
        names = list(self._net.state_dict().keys())
        if len(arrays) != len(names):
            raise ValueError("Expected %d parameter arrays, got %d" % (len(names), len(arrays)))
        state = {name: torch.from_numpy(np.ascontiguousarray(array, dtype=np.float32))
                 for name, array in zip(names, arrays)}
        self._net.load_state_dict(state)
        self._net.eval()

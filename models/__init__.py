"""
Gesture classifier models.

Provides:
    - GestureModel: backend contract used by training and inference
    - GestureNet / NeuralNetworkModel: dense classifier over 63 landmark features
    - ModelArtifactStore: three-file save/load of a trained model
"""

__all__ = [
    "GestureModel",
    "GestureNet",
    "NeuralNetworkModel",
    "ModelArtifactStore",
]

"""
Training package for the gesture classifier.

Provides:
    - DatasetBuilder: upload JSON -> validated Dataset -> training examples
    - train.py: Trainer plus the standalone training script
"""

"""
Ensemble Module
===============

Post-hoc blending of already-trained models: the ensemble prediction for a
row is the weighted average of the constituent predictions. Nothing is
refit here; trained models are passed in explicitly.
"""

import logging
from typing import Dict, Optional, Sequence, Union

import numpy as np

from .model import RentalRegressor
from .preprocessing import PreparedData

logger = logging.getLogger(__name__)


def combine_predictions(
    predictions: Sequence,
    weights: Optional[Sequence[float]] = None
) -> np.ndarray:
    """
    Weighted average of per-row predictions.

    Args:
        predictions: One prediction vector per model, all the same length
        weights: One non-negative weight per model (default: uniform)

    Returns:
        ``sum(w_i * p_i) / sum(w_i)`` for every row

    Raises:
        ValueError: On length mismatches, negative weights or a zero weight sum
    """
    if len(predictions) == 0:
        raise ValueError("At least one prediction vector is required")

    lengths = {len(np.ravel(p)) for p in predictions}
    if len(lengths) != 1:
        raise ValueError(f"Prediction vectors differ in length: {sorted(lengths)}")

    stacked = np.vstack([np.asarray(p, dtype=float).ravel() for p in predictions])

    if weights is None:
        weights = np.ones(len(predictions))
    weights = np.asarray(weights, dtype=float)

    if weights.shape != (len(predictions),):
        raise ValueError(f"Expected {len(predictions)} weights, got {weights.size}")
    if np.any(weights < 0):
        raise ValueError("Weights must be non-negative")
    if weights.sum() == 0:
        raise ValueError("Weights must not sum to zero")

    return weights @ stacked / weights.sum()


class EnsembleModel:
    """
    Weighted average of fitted models, each fed its own representation.

    Constituents are keyed by a slot name (e.g. 'knn', 'tree', 'linear');
    :meth:`with_model` swaps the implementation behind a slot, such as a
    bagged tree in place of the plain tree, without changing the interface.
    """

    def __init__(
        self,
        models: Dict[str, RentalRegressor],
        weights: Optional[Union[Dict[str, float], Sequence[float]]] = None
    ):
        if not models:
            raise ValueError("An ensemble needs at least one model")

        self.models = dict(models)

        if weights is None:
            self.weights = {name: 1.0 for name in self.models}
        elif isinstance(weights, dict):
            missing = set(self.models) - set(weights)
            if missing:
                raise ValueError(f"No weight given for: {sorted(missing)}")
            self.weights = {name: float(weights[name]) for name in self.models}
        else:
            if len(weights) != len(self.models):
                raise ValueError(f"Expected {len(self.models)} weights, got {len(weights)}")
            self.weights = {name: float(w) for name, w in zip(self.models, weights)}

    def with_model(self, slot: str, model: RentalRegressor) -> 'EnsembleModel':
        """Return a new ensemble with ``slot`` served by ``model``."""
        if slot not in self.models:
            raise KeyError(f"Unknown ensemble slot: {slot}")

        models = dict(self.models)
        models[slot] = model
        return EnsembleModel(models, self.weights)

    def predictions_by_model(self, data: PreparedData) -> Dict[str, np.ndarray]:
        """Each constituent's predictions for the rows of ``data``."""
        return {
            slot: model.predict(data.features(model.representation))
            for slot, model in self.models.items()
        }

    def predict(self, data: PreparedData) -> np.ndarray:
        """Blended predictions for the rows of ``data``."""
        per_model = self.predictions_by_model(data)
        return combine_predictions(
            [per_model[slot] for slot in self.models],
            [self.weights[slot] for slot in self.models]
        )

    def describe(self) -> str:
        parts = [f"{slot}={model.name} (w={self.weights[slot]:g})" for slot, model in self.models.items()]
        return "Ensemble[" + ", ".join(parts) + "]"

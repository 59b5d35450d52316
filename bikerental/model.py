"""
Model Training Module
=====================

Regressors for hourly rental counts, sharing one interface:

    model.fit(X, y) -> model
    model.predict(X) -> np.ndarray

Each model declares the table it expects through ``representation``
('encoded' for the one-hot table, 'transformed' for the factor table), so
callers can hand every model its inputs from the same PreparedData.

Models:
    - KNNRentalModel: k nearest neighbours on standardized encoded features
    - TreeRentalModel: CART regression tree, optionally bagged
    - LinearRentalModel: OLS with optional significance pruning (statsmodels)
    - MeanBaselineModel: predicts the training mean
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple, Iterable, List
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
import statsmodels.api as sm
from sklearn.dummy import DummyRegressor
from sklearn.ensemble import BaggingRegressor
from sklearn.neighbors import KNeighborsRegressor
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeRegressor

from .evaluation import calculate_metrics

logger = logging.getLogger(__name__)

MODEL_NAMES = ("knn", "tree", "linear")


class RentalRegressor:
    """
    Base class handling fit bookkeeping, validation and persistence.

    Subclasses implement ``_build`` (fit and return the underlying
    estimator) and may override ``_design`` to map a feature table to the
    estimator's input matrix.
    """

    name = "base"
    representation = "encoded"

    def __init__(self):
        self.model: Any = None
        self.feature_names_: Optional[List[str]] = None
        self.n_features_in_: Optional[int] = None
        self.training_info: Dict[str, Any] = {}
        self._is_fitted = False

    def get_params(self) -> Dict[str, Any]:
        return {}

    def _design(self, X: pd.DataFrame) -> Any:
        return X.to_numpy(dtype=float)

    def _build(self, X: Any, y: np.ndarray) -> Any:
        raise NotImplementedError

    def _check_input(self, X: pd.DataFrame) -> None:
        if X.shape[1] != self.n_features_in_:
            raise ValueError(
                f"Expected {self.n_features_in_} features, but got {X.shape[1]}"
            )

    def fit(self, X: pd.DataFrame, y) -> 'RentalRegressor':
        """
        Train the model.

        Args:
            X: Feature table in this model's representation
            y: Target values aligned with ``X``

        Returns:
            Self for method chaining
        """
        if len(X) != len(y):
            raise ValueError(f"X has {len(X)} rows but y has {len(y)}")
        if len(X) == 0:
            raise ValueError("Cannot fit on an empty table")

        start_time = datetime.now()

        self.feature_names_ = list(X.columns)
        self.n_features_in_ = X.shape[1]
        y = np.asarray(y, dtype=float)

        self.model = self._build(self._design(X), y)

        end_time = datetime.now()
        training_duration = (end_time - start_time).total_seconds()

        self.training_info = {
            'training_duration_seconds': training_duration,
            'n_samples': int(X.shape[0]),
            'n_features': int(X.shape[1]),
            'trained_at': end_time.isoformat(),
            'hyperparameters': self.get_params()
        }
        self._is_fitted = True

        logger.info(
            f"Trained {self.name} on {X.shape[0]} rows × {X.shape[1]} features "
            f"in {training_duration:.2f}s"
        )
        return self

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        """
        Predict rental counts for the rows of ``X``.

        Raises:
            ValueError: If the model is not fitted or the feature count differs
        """
        if not self._is_fitted:
            raise ValueError("Model must be trained before prediction. Call fit() first.")

        self._check_input(X)
        return np.asarray(self.model.predict(self._design(X)), dtype=float).ravel()

    def save(self, filepath: str) -> None:
        """
        Save the trained model to disk.

        Args:
            filepath: Path to save the model
        """
        if not self._is_fitted:
            raise ValueError("Cannot save untrained model.")

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'RentalRegressor':
        """
        Load a trained model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded model instance
        """
        model = joblib.load(filepath)
        if not isinstance(model, cls):
            raise TypeError(f"{filepath} holds a {type(model).__name__}, not a {cls.__name__}")

        logger.info(f"Model loaded from {filepath}")
        return model


class KNNRentalModel(RentalRegressor):
    """
    k-nearest-neighbours regression on the one-hot encoded table.

    Features are standardized before the Euclidean distance is taken. When
    ``n_neighbors`` is None, k defaults to the rounded square root of the
    training row count.
    """

    name = "knn"
    representation = "encoded"

    def __init__(self, n_neighbors: Optional[int] = None):
        super().__init__()
        self.n_neighbors = n_neighbors
        self.k_: Optional[int] = None

    def get_params(self) -> Dict[str, Any]:
        return {'n_neighbors': self.n_neighbors, 'k': self.k_}

    def _build(self, X: np.ndarray, y: np.ndarray) -> Pipeline:
        k = self.n_neighbors or int(round(np.sqrt(len(X))))
        self.k_ = max(1, min(k, len(X)))

        pipeline = Pipeline([
            ('scale', StandardScaler()),
            ('knn', KNeighborsRegressor(n_neighbors=self.k_))
        ])
        return pipeline.fit(X, y)


class TreeRentalModel(RentalRegressor):
    """
    Regression tree, or a bag of ``n_estimators`` trees each grown on a
    bootstrap resample with predictions averaged across trees.

    ``min_samples_split`` and ``ccp_alpha`` (cost-complexity penalty) control
    the growth of every tree.
    """

    representation = "encoded"

    def __init__(
        self,
        min_samples_split: int = 20,
        ccp_alpha: float = 0.0,
        bagging: bool = False,
        n_estimators: int = 20,
        random_state: int = 42
    ):
        super().__init__()
        self.min_samples_split = min_samples_split
        self.ccp_alpha = ccp_alpha
        self.bagging = bagging
        self.n_estimators = n_estimators
        self.random_state = random_state

    @property
    def name(self) -> str:
        return "bagged_tree" if self.bagging else "tree"

    def get_params(self) -> Dict[str, Any]:
        params = {
            'min_samples_split': self.min_samples_split,
            'ccp_alpha': self.ccp_alpha,
            'bagging': self.bagging,
        }
        if self.bagging:
            params['n_estimators'] = self.n_estimators
        return params

    def _create_base_estimator(self) -> DecisionTreeRegressor:
        return DecisionTreeRegressor(
            min_samples_split=self.min_samples_split,
            ccp_alpha=self.ccp_alpha,
            random_state=self.random_state
        )

    def _build(self, X: np.ndarray, y: np.ndarray):
        if not self.bagging:
            return self._create_base_estimator().fit(X, y)

        bag = BaggingRegressor(
            estimator=self._create_base_estimator(),
            n_estimators=self.n_estimators,
            bootstrap=True,
            random_state=self.random_state
        )
        return bag.fit(X, y)

    def get_feature_importances(self) -> pd.Series:
        """Impurity-based importances (averaged over trees when bagged)."""
        if not self._is_fitted:
            raise ValueError("Model must be trained first.")

        if self.bagging:
            importances = np.mean([t.feature_importances_ for t in self.model.estimators_], axis=0)
        else:
            importances = self.model.feature_importances_
        return pd.Series(importances, index=self.feature_names_).sort_values(ascending=False)


class LinearRentalModel(RentalRegressor):
    """
    Ordinary least squares on the transformed table.

    Categorical columns are reference-coded (first level dropped) and an
    intercept is added. With ``prune=True`` a first full fit is followed by a
    refit on the covariates whose p-value is below ``alpha``.
    """

    name = "linear"
    representation = "transformed"

    def __init__(self, prune: bool = True, alpha: float = 0.05):
        super().__init__()
        self.prune = prune
        self.alpha = alpha
        self.design_columns_: Optional[List[str]] = None
        self.selected_columns_: Optional[List[str]] = None
        self.dropped_columns_: List[str] = []

    def get_params(self) -> Dict[str, Any]:
        return {'prune': self.prune, 'alpha': self.alpha}

    def _dummies(self, X: pd.DataFrame) -> pd.DataFrame:
        design = pd.get_dummies(X, drop_first=True, dtype=float).astype(float)
        if self.design_columns_ is not None:
            design = design.reindex(columns=self.design_columns_, fill_value=0.0)
        return design

    def _design(self, X: pd.DataFrame) -> pd.DataFrame:
        design = self._dummies(X)
        if self.selected_columns_ is not None:
            design = design[self.selected_columns_]
        return sm.add_constant(design, has_constant='add')

    def _build(self, X: pd.DataFrame, y: np.ndarray):
        self.design_columns_ = [c for c in X.columns if c != 'const']
        full = sm.OLS(y, X).fit()

        if not self.prune:
            self.selected_columns_ = list(self.design_columns_)
            return full

        pvalues = full.pvalues.drop('const')
        keep = [c for c in self.design_columns_ if pvalues[c] < self.alpha]
        if not keep:
            keep = [pvalues.idxmin()]
        self.dropped_columns_ = [c for c in self.design_columns_ if c not in keep]
        self.selected_columns_ = keep

        if self.dropped_columns_:
            logger.info(f"Pruned non-significant covariates (p >= {self.alpha}): {self.dropped_columns_}")

        return sm.OLS(y, X[['const'] + keep]).fit()

    def fit(self, X: pd.DataFrame, y) -> 'LinearRentalModel':
        self.design_columns_ = None
        self.selected_columns_ = None
        self.dropped_columns_ = []
        return super().fit(X, y)

    def coefficients(self) -> pd.DataFrame:
        """Coefficient table of the final fit (estimate, std error, p-value)."""
        if not self._is_fitted:
            raise ValueError("Model must be trained first.")

        return pd.DataFrame({
            'coef': self.model.params,
            'std_err': self.model.bse,
            'p_value': self.model.pvalues
        })


class MeanBaselineModel(RentalRegressor):
    """Predicts the mean training target for every row."""

    name = "baseline"
    representation = "encoded"

    def _build(self, X: np.ndarray, y: np.ndarray) -> DummyRegressor:
        return DummyRegressor(strategy='mean').fit(X, y)


def tune_knn_k(
    X_train: pd.DataFrame,
    y_train,
    X_val: pd.DataFrame,
    y_val,
    k_values: Iterable[int] = range(1, 16)
) -> Tuple[int, Dict[int, float]]:
    """
    Sweep k and pick the value with the lowest validation MAD.

    Returns:
        Tuple of (best k, MAD per k)
    """
    mad_by_k = {}
    for k in k_values:
        model = KNNRentalModel(n_neighbors=k).fit(X_train, y_train)
        mad_by_k[k] = calculate_metrics(y_val, model.predict(X_val))['mad']

    best_k = min(mad_by_k, key=mad_by_k.get)
    logger.info(f"Best k = {best_k} (validation MAD {mad_by_k[best_k]:.4f})")
    return best_k, mad_by_k


def build_model(name: str, config: Optional[Dict[str, Any]] = None) -> RentalRegressor:
    """
    Create an unfitted model from the ``models`` configuration section.

    Args:
        name: One of 'knn', 'tree', 'bagged_tree', 'linear', 'baseline'
        config: Model configuration dictionary

    Returns:
        Unfitted model
    """
    config = config or {}

    if name == 'knn':
        knn_config = config.get('knn', {})
        return KNNRentalModel(n_neighbors=knn_config.get('n_neighbors'))

    if name in ('tree', 'bagged_tree'):
        tree_config = config.get('tree', {})
        return TreeRentalModel(
            min_samples_split=tree_config.get('min_samples_split', 20),
            ccp_alpha=tree_config.get('ccp_alpha', 0.0),
            bagging=(name == 'bagged_tree'),
            n_estimators=tree_config.get('n_estimators', 20),
            random_state=tree_config.get('random_state', 42)
        )

    if name == 'linear':
        linear_config = config.get('linear', {})
        return LinearRentalModel(
            prune=linear_config.get('prune', True),
            alpha=linear_config.get('alpha', 0.05)
        )

    if name == 'baseline':
        return MeanBaselineModel()

    raise ValueError(f"Unknown model: {name}. Choose from: knn, tree, bagged_tree, linear, baseline")


def train_model(
    name: str,
    X_train: pd.DataFrame,
    y_train,
    config: Optional[Dict[str, Any]] = None,
    save_path: Optional[str] = None
) -> RentalRegressor:
    """
    Build and fit a model using configuration parameters.

    Args:
        name: Model name (see build_model)
        X_train: Training features in the model's representation
        y_train: Training targets
        config: Model configuration dictionary
        save_path: Path to save the trained model (optional)

    Returns:
        Trained model
    """
    model = build_model(name, config)
    model.fit(X_train, y_train)

    if save_path:
        model.save(save_path)

    return model


def print_model_summary(model: RentalRegressor) -> None:
    """
    Print a summary of a trained model.

    Args:
        model: Trained model instance
    """
    print("\n" + "=" * 50)
    print(f"MODEL SUMMARY: {model.name}")
    print("=" * 50)
    print(f"Model Type: {type(model).__name__} ({model.representation} features)")
    print(f"Number of input features: {model.n_features_in_}")
    print(f"\nHyperparameters:")
    for key, value in model.get_params().items():
        print(f"  - {key}: {value}")

    if isinstance(model, LinearRentalModel) and model.dropped_columns_:
        print(f"\nPruned covariates: {', '.join(model.dropped_columns_)}")

    if model.training_info:
        print(f"\nTraining Info:")
        print(f"  - Duration: {model.training_info.get('training_duration_seconds', 0):.2f}s")
        print(f"  - Samples: {model.training_info.get('n_samples', 'N/A')}")

    print("=" * 50 + "\n")

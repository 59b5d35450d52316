"""
Cross-Validation Module
=======================

K-fold harness: every model type is retrained on all rows outside a fold,
scored by MAD on the fold, and summarized by its mean MAD over the folds.

Fold boundaries: the rows are shuffled with a seeded permutation and cut
into ``n_folds`` contiguous blocks of ``n_rows // n_folds`` positions; the
last block also takes the remaining ``n_rows % n_folds`` positions. Blocks
never overlap and together cover every row once.
"""

import logging
from typing import Callable, Dict, Any, List

import numpy as np

from .evaluation import calculate_metrics
from .model import RentalRegressor
from .preprocessing import PreparedData

logger = logging.getLogger(__name__)


def kfold_indices(n_rows: int, n_folds: int = 5, random_state: int = 42) -> List[np.ndarray]:
    """
    Row positions of each test fold.

    Args:
        n_rows: Number of rows in the table
        n_folds: Number of folds
        random_state: Seed of the permutation

    Returns:
        List of ``n_folds`` integer arrays
    """
    if n_folds < 2:
        raise ValueError(f"n_folds must be at least 2, got {n_folds}")
    if n_rows < n_folds:
        raise ValueError(f"Cannot split {n_rows} rows into {n_folds} folds")

    permutation = np.random.default_rng(random_state).permutation(n_rows)
    size = n_rows // n_folds

    folds = []
    for i in range(n_folds):
        start = i * size
        stop = n_rows if i == n_folds - 1 else (i + 1) * size
        folds.append(permutation[start:stop])
    return folds


def cross_validate(
    data: PreparedData,
    model_factories: Dict[str, Callable[[], RentalRegressor]],
    n_folds: int = 5,
    random_state: int = 42
) -> Dict[str, Any]:
    """
    Mean out-of-fold MAD for each model type.

    Args:
        data: Prepared tables (all representations aligned)
        model_factories: Callables returning a fresh unfitted model, by name
        n_folds: Number of folds
        random_state: Seed of the fold permutation

    Returns:
        Dictionary with per-fold MAD lists ('mad'), their means ('mean_mad'),
        and the fold sizes
    """
    logger.info("=" * 60)
    logger.info(f"STARTING {n_folds}-FOLD CROSS-VALIDATION")
    logger.info("=" * 60)

    folds = kfold_indices(len(data), n_folds, random_state)
    all_positions = np.arange(len(data))
    mad: Dict[str, List[float]] = {name: [] for name in model_factories}

    for i, test_pos in enumerate(folds):
        train_pos = np.setdiff1d(all_positions, test_pos)
        train, test = data.subset(train_pos), data.subset(test_pos)

        for name, factory in model_factories.items():
            model = factory()
            model.fit(train.features(model.representation), train.target)
            predicted = model.predict(test.features(model.representation))
            mad[name].append(calculate_metrics(test.target, predicted)['mad'])

        logger.info(
            f"Fold {i + 1}/{n_folds} ({len(test_pos)} rows): "
            + ", ".join(f"{name}={values[-1]:.2f}" for name, values in mad.items())
        )

    mean_mad = {name: float(np.mean(values)) for name, values in mad.items()}

    logger.info("=" * 60)
    logger.info("CROSS-VALIDATION COMPLETE")
    for name, value in mean_mad.items():
        logger.info(f"  {name}: mean MAD {value:.2f}")
    logger.info("=" * 60)

    return {
        'n_folds': n_folds,
        'fold_sizes': [int(len(f)) for f in folds],
        'mad': mad,
        'mean_mad': mean_mad
    }


def print_cross_validation_report(result: Dict[str, Any]) -> None:
    """
    Print per-fold and mean MAD for each model.

    Args:
        result: Result dictionary from cross_validate
    """
    n_folds = result['n_folds']
    print("\n" + "=" * 70)
    print(f"{n_folds}-FOLD CROSS-VALIDATION (MAD)")
    print("=" * 70)

    header = f"{'Model':<15}" + "".join(f"{'Fold ' + str(i + 1):<10}" for i in range(n_folds)) + "Mean"
    print(header)
    print("-" * 70)
    for name, values in result['mad'].items():
        row = f"{name:<15}" + "".join(f"{v:<10.2f}" for v in values)
        print(row + f"{result['mean_mad'][name]:.2f}")
    print("=" * 70 + "\n")

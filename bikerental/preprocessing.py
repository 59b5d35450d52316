"""
Data Preprocessing Module
=========================

Turns the raw rental table into the two aligned representations used by the
models: a human-readable transformed table (factors, stabilized skewed
columns) and a fully numeric one-hot encoded table.

Every stage returns a new DataFrame; inputs are never modified in place.

Functions:
    - add_precipitation_flag: Derive the rain-or-snow indicator
    - standardize: Z-score scaling for plots and outlier detection
    - remove_outliers: Drop rows outside a joint ±3 z-score window
    - factorize_categoricals: Cast to fixed-category pandas Categoricals
    - inject_missing_values / impute_median: Missing-value demonstration
    - VarianceStabilizer: Choose and apply sqrt / log / inverse transforms
    - one_hot_encode: Indicator columns for the distance-based model
    - preprocess_pipeline: Run all stages and return PreparedData
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Tuple, Optional, List

import pandas as pd
import numpy as np
from scipy import stats
from sklearn.preprocessing import StandardScaler
from sklearn.model_selection import train_test_split
import joblib

from .data_loader import EXPECTED_CATEGORIES, TARGET_COLUMN

logger = logging.getLogger(__name__)

OUTLIER_COLUMNS = [
    "temperature",
    "humidity",
    "wind_speed",
    "visibility",
    "dew_point_temperature",
    "solar_radiation",
    "rainfall",
    "snowfall",
]

SKEWED_COLUMNS = ["wind_speed", "visibility", "solar_radiation", "rainfall", "snowfall"]

TRANSFORMS = ("none", "sqrt", "log", "inverse")

# scipy's Shapiro-Wilk p-value is only accurate up to this many observations
MAX_NORMALITY_SAMPLE = 5000

NON_FEATURE_COLUMNS = ["date", TARGET_COLUMN]


def add_precipitation_flag(df: pd.DataFrame) -> pd.DataFrame:
    """
    Add a binary ``precipitation`` column: 1 when rainfall or snowfall is
    above the dataset minimum for that hour, else 0.
    """
    out = df.copy()
    present = (out["rainfall"] > out["rainfall"].min()) | (out["snowfall"] > out["snowfall"].min())
    out["precipitation"] = present.astype(int)
    return out


def standardize(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    """
    Return a copy of ``df`` with ``columns`` scaled to zero mean, unit variance.

    Only used for visualization and outlier detection; the models consume the
    transformed/encoded tables instead.
    """
    out = df.copy()
    scaler = StandardScaler()
    out[columns] = scaler.fit_transform(out[columns].astype(float).values)
    return out


def remove_outliers(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    threshold: float = 3.0
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """
    Drop rows whose z-score exceeds ``threshold`` in any of ``columns``.

    Z-scores are computed once against the input table and all column masks
    are combined jointly, so the result does not depend on column order.
    The original index is preserved so other representations can be kept in
    sync with :func:`align_rows`.

    Args:
        df: Input table
        columns: Continuous columns to screen (default: the 8 weather columns)
        threshold: Maximum absolute z-score kept

    Returns:
        Tuple of (filtered table, report with per-column exclusion counts)
    """
    columns = columns or OUTLIER_COLUMNS
    z = standardize(df, columns)[columns]

    within = z.abs() <= threshold
    keep = within.all(axis=1)

    report = {
        'n_before': int(len(df)),
        'n_after': int(keep.sum()),
        'n_removed': int((~keep).sum()),
        'threshold': threshold,
        'by_column': {col: int((~within[col]).sum()) for col in columns}
    }

    logger.info(
        f"Outlier filter removed {report['n_removed']} of {report['n_before']} rows "
        f"(|z| > {threshold})"
    )

    return df.loc[keep].copy(), report


def align_rows(frame: pd.DataFrame, reference: pd.DataFrame) -> pd.DataFrame:
    """Restrict ``frame`` to the rows (by index) that survive in ``reference``."""
    return frame.loc[reference.index].copy()


def factorize_categoricals(
    df: pd.DataFrame,
    categories: Optional[Dict[str, List[str]]] = None
) -> pd.DataFrame:
    """
    Cast categorical columns to pandas Categoricals with a fixed level order.

    Raises:
        ValueError: If a column's observed values are not exactly the
            expected category set
    """
    categories = categories or EXPECTED_CATEGORIES
    out = df.copy()

    for col, expected in categories.items():
        observed = set(out[col].astype(str).unique())
        if observed != set(expected):
            raise ValueError(
                f"Column '{col}' categories {sorted(observed)} do not match "
                f"expected {sorted(expected)}"
            )
        out[col] = pd.Categorical(out[col].astype(str), categories=expected)

    return out


def inject_missing_values(
    df: pd.DataFrame,
    columns: List[str],
    fraction: float = 0.05,
    random_state: int = 42
) -> pd.DataFrame:
    """
    Blank a uniformly random ``fraction`` of rows in each numeric column.

    For demonstrating the imputation step only.

    Raises:
        ValueError: If a requested column is not numeric
    """
    out = df.copy()
    rng = np.random.default_rng(random_state)
    n_missing = int(round(len(out) * fraction))

    for col in columns:
        if not pd.api.types.is_numeric_dtype(out[col]):
            raise ValueError(f"Cannot inject missing values into non-numeric column '{col}'")
        out[col] = out[col].astype(float)
        rows = rng.choice(len(out), size=n_missing, replace=False)
        out.iloc[rows, out.columns.get_loc(col)] = np.nan

    logger.info(f"Injected {n_missing} missing values into each of {len(columns)} columns")
    return out


def impute_median(
    df: pd.DataFrame,
    columns: List[str]
) -> Tuple[pd.DataFrame, Dict[str, float]]:
    """
    Fill missing values in each of ``columns`` with that column's median.

    Returns:
        Tuple of (imputed table, median used per column)
    """
    out = df.copy()
    medians = {}

    for col in columns:
        median = float(out[col].median())
        n_filled = int(out[col].isna().sum())
        out[col] = out[col].fillna(median)
        medians[col] = median
        if n_filled:
            logger.info(f"Imputed {n_filled} values in '{col}' with median {median:.4f}")

    return out, medians


def normality_test(values: np.ndarray, max_size: int = MAX_NORMALITY_SAMPLE) -> Tuple[float, float]:
    """
    Shapiro-Wilk test returning ``(W statistic, p-value)``.

    Raises:
        ValueError: If more than ``max_size`` values are passed; subsample first
    """
    values = np.asarray(values, dtype=float)
    if len(values) > max_size:
        raise ValueError(
            f"Normality test supports at most {max_size} values, got {len(values)}; subsample first"
        )
    result = stats.shapiro(values)
    return float(result.statistic), float(result.pvalue)


def _forward(name: str, x: np.ndarray, offset: float) -> np.ndarray:
    shifted = x + offset
    if name == "none":
        return x
    if name == "sqrt":
        return np.sqrt(shifted)
    if name == "log":
        return np.log(shifted)
    if name == "inverse":
        return 1.0 / shifted
    raise ValueError(f"Unknown transform: {name}")


def _backward(name: str, y: np.ndarray, offset: float) -> np.ndarray:
    if name == "none":
        return y
    if name == "sqrt":
        return np.square(y) - offset
    if name == "log":
        return np.exp(y) - offset
    if name == "inverse":
        return 1.0 / y - offset
    raise ValueError(f"Unknown transform: {name}")


class VarianceStabilizer:
    """
    Per-column selection of a variance-stabilizing transform.

    For every configured column the untransformed, square-root, logarithmic
    and inverse versions of ``x + offset`` are scored with a Shapiro-Wilk
    test on a fixed random subsample. The candidate with the highest p-value
    wins (W statistic breaks ties, since p-values underflow to zero on large
    skewed samples). It is applied only if its W statistic beats the
    untransformed column by at least ``min_improvement``; otherwise the
    column is left as-is and recorded as ``"none"``.
    """

    def __init__(
        self,
        columns: Optional[List[str]] = None,
        sample_size: int = MAX_NORMALITY_SAMPLE,
        min_improvement: float = 0.01,
        random_state: int = 42
    ):
        """
        Args:
            columns: Skewed columns to consider
            sample_size: Subsample size for the normality test (<= 5000)
            min_improvement: Required gain in W over the untransformed column
            random_state: Seed for the subsample
        """
        if sample_size > MAX_NORMALITY_SAMPLE:
            raise ValueError(
                f"sample_size must be <= {MAX_NORMALITY_SAMPLE}, got {sample_size}"
            )
        self.columns = list(columns) if columns is not None else list(SKEWED_COLUMNS)
        self.sample_size = sample_size
        self.min_improvement = min_improvement
        self.random_state = random_state

        self.choices_: Dict[str, Dict[str, Any]] = {}
        self._is_fitted = False

    def _score_column(self, x: np.ndarray, offset: float, sample: np.ndarray) -> Dict[str, Tuple[float, float]]:
        scores = {}
        for name in TRANSFORMS:
            y = _forward(name, x[sample], offset)
            if np.ptp(y) == 0:
                scores[name] = (float('nan'), float('nan'))
                continue
            scores[name] = normality_test(y, self.sample_size)
        return scores

    def fit(self, df: pd.DataFrame) -> 'VarianceStabilizer':
        """
        Choose a transform for every configured column.

        Args:
            df: Table containing the columns

        Returns:
            Self for method chaining
        """
        rng = np.random.default_rng(self.random_state)
        n = len(df)
        sample = rng.choice(n, size=min(n, self.sample_size), replace=False)

        for col in self.columns:
            x = df[col].astype(float).to_numpy()
            x_min = float(x.min())
            offset = 1.0 - x_min if x_min < 1.0 else 0.0

            scores = self._score_column(x, offset, sample)

            def rank(name):
                w, p = scores[name]
                return (
                    -np.inf if np.isnan(p) else p,
                    -np.inf if np.isnan(w) else w
                )

            best = max(TRANSFORMS, key=rank)
            w_none = scores["none"][0]
            w_best = scores[best][0]

            if best != "none" and not (w_best - w_none >= self.min_improvement):
                logger.info(
                    f"No transform improves '{col}' by {self.min_improvement} (best: {best}); left as-is"
                )
                best = "none"

            self.choices_[col] = {
                'transform': best,
                'offset': offset,
                'scores': {name: {'w': w, 'p': p} for name, (w, p) in scores.items()}
            }
            logger.info(f"Selected transform for '{col}': {best} (offset {offset:g})")

        self._is_fitted = True
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """Return a copy of ``df`` with the chosen transforms applied."""
        if not self._is_fitted:
            raise ValueError("Stabilizer must be fitted before transform. Call fit() first.")

        out = df.copy()
        for col, choice in self.choices_.items():
            out[col] = _forward(choice['transform'], out[col].astype(float).to_numpy(), choice['offset'])
        return out

    def fit_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        self.fit(df)
        return self.transform(df)

    def inverse_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """Undo :meth:`transform`, recovering the original column values."""
        if not self._is_fitted:
            raise ValueError("Stabilizer must be fitted before inverse_transform.")

        out = df.copy()
        for col, choice in self.choices_.items():
            out[col] = _backward(choice['transform'], out[col].astype(float).to_numpy(), choice['offset'])
        return out

    def summary(self) -> pd.DataFrame:
        """Table of chosen transform, offset and W/p per candidate."""
        rows = []
        for col, choice in self.choices_.items():
            row = {'column': col, 'transform': choice['transform'], 'offset': choice['offset']}
            for name, score in choice['scores'].items():
                row[f'{name}_w'] = score['w']
                row[f'{name}_p'] = score['p']
            rows.append(row)
        return pd.DataFrame(rows)

    def save(self, filepath: str) -> None:
        state = {
            'columns': self.columns,
            'sample_size': self.sample_size,
            'min_improvement': self.min_improvement,
            'random_state': self.random_state,
            'choices_': self.choices_,
            '_is_fitted': self._is_fitted
        }
        joblib.dump(state, filepath)
        logger.info(f"Stabilizer saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'VarianceStabilizer':
        state = joblib.load(filepath)

        stabilizer = cls(
            columns=state['columns'],
            sample_size=state['sample_size'],
            min_improvement=state['min_improvement'],
            random_state=state['random_state']
        )
        stabilizer.choices_ = state['choices_']
        stabilizer._is_fitted = state['_is_fitted']

        logger.info(f"Stabilizer loaded from {filepath}")
        return stabilizer


def one_hot_encode(df: pd.DataFrame, columns: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Replace each categorical column with one float indicator column per level.

    No reference level is dropped: k categories give k columns.
    """
    columns = columns or list(EXPECTED_CATEGORIES)
    return pd.get_dummies(df, columns=columns, prefix=columns, dtype=float)


@dataclass
class PreparedData:
    """
    Aligned outputs of :func:`preprocess_pipeline`.

    ``transformed`` and ``encoded`` share the same index and row order;
    ``target`` is the rental count on its original scale.
    """
    transformed: pd.DataFrame
    encoded: pd.DataFrame
    target: pd.Series
    stabilizer: VarianceStabilizer
    outlier_report: Dict[str, Any]
    medians: Dict[str, float] = field(default_factory=dict)
    missing_fraction: Optional[float] = None
    scaled: Optional[pd.DataFrame] = None

    def features(self, representation: str) -> pd.DataFrame:
        """Model inputs for ``representation`` ('transformed' or 'encoded')."""
        if representation == "encoded":
            table = self.encoded
        elif representation == "transformed":
            table = self.transformed
        else:
            raise ValueError(f"Unknown representation: {representation}")
        return table.drop(columns=[c for c in NON_FEATURE_COLUMNS if c in table.columns])

    def subset(self, positions) -> 'PreparedData':
        """Rows at integer ``positions``, taken identically from every table."""
        positions = np.asarray(positions, dtype=int)
        return PreparedData(
            transformed=self.transformed.iloc[positions],
            encoded=self.encoded.iloc[positions],
            target=self.target.iloc[positions],
            stabilizer=self.stabilizer,
            outlier_report=self.outlier_report,
            medians=self.medians,
            missing_fraction=self.missing_fraction,
            scaled=self.scaled.iloc[positions] if self.scaled is not None else None
        )

    def __len__(self) -> int:
        return len(self.target)


def split_indices(
    n_rows: int,
    test_size: float = 0.2,
    random_state: int = 42
) -> Tuple[np.ndarray, np.ndarray]:
    """Random train/test row positions for a table of ``n_rows`` rows."""
    positions = np.arange(n_rows)
    train_pos, test_pos = train_test_split(positions, test_size=test_size, random_state=random_state)
    return np.sort(train_pos), np.sort(test_pos)


def preprocess_pipeline(
    df: pd.DataFrame,
    config: Optional[Dict[str, Any]] = None
) -> PreparedData:
    """
    Complete preprocessing pipeline for the rental table.

    Stages: precipitation flag, optional missing-value demonstration with
    median imputation (run on a copy, so the modelled table keeps the
    observed values), joint outlier removal, categorical factorization,
    variance stabilization, one-hot encoding.

    Args:
        df: Table returned by ``load_data``
        config: The ``preprocessing`` section of the configuration

    Returns:
        PreparedData with aligned transformed and encoded tables
    """
    config = config or {}
    seed = config.get('random_state', 42)

    logger.info("=" * 60)
    logger.info("STARTING DATA PREPROCESSING")
    logger.info("=" * 60)

    table = add_precipitation_flag(df)

    # The missing-value demonstration works on its own copy; only its
    # medians are kept. Models always see the observed values.
    medians = {}
    missing_fraction = None
    if config.get('inject_missing', False):
        impute_columns = config.get('impute_columns', OUTLIER_COLUMNS)
        missing_fraction = config.get('missing_fraction', 0.05)
        demo = inject_missing_values(
            table,
            impute_columns,
            fraction=missing_fraction,
            random_state=seed
        )
        _, medians = impute_median(demo, impute_columns)

    outlier_columns = config.get('outlier_columns', OUTLIER_COLUMNS)
    table, outlier_report = remove_outliers(
        table,
        outlier_columns,
        threshold=config.get('outlier_threshold', 3.0)
    )

    table = factorize_categoricals(table)
    scaled = standardize(table, outlier_columns)

    stabilizer = VarianceStabilizer(
        columns=config.get('skewed_columns', SKEWED_COLUMNS),
        sample_size=config.get('normality_sample_size', MAX_NORMALITY_SAMPLE),
        min_improvement=config.get('min_improvement', 0.01),
        random_state=seed
    )
    transformed = stabilizer.fit_transform(table)
    encoded = one_hot_encode(transformed)

    target_column = config.get('target', TARGET_COLUMN)
    data = PreparedData(
        transformed=transformed,
        encoded=encoded,
        target=transformed[target_column].astype(float),
        stabilizer=stabilizer,
        outlier_report=outlier_report,
        medians=medians,
        missing_fraction=missing_fraction,
        scaled=scaled
    )

    logger.info("=" * 60)
    logger.info("PREPROCESSING COMPLETE")
    logger.info(f"  Rows kept: {len(data)}")
    logger.info(f"  Transformed features: {data.features('transformed').shape[1]}")
    logger.info(f"  Encoded features: {data.features('encoded').shape[1]}")
    logger.info("=" * 60)

    return data


def print_preprocessing_summary(data: PreparedData) -> None:
    """
    Print a summary of the preprocessing results.

    Args:
        data: Result of preprocess_pipeline
    """
    report = data.outlier_report
    print("\n" + "=" * 50)
    print("PREPROCESSING SUMMARY")
    print("=" * 50)
    print(f"Rows before outlier filter: {report['n_before']}")
    print(f"Rows removed (|z| > {report['threshold']}): {report['n_removed']}")
    for col, count in report['by_column'].items():
        print(f"  - {col}: {count}")
    if data.medians:
        print("\nMedian imputation:")
        for col, median in data.medians.items():
            print(f"  - {col}: {median:.4f}")
    print("\nVariance-stabilizing transforms:")
    for col, choice in data.stabilizer.choices_.items():
        print(f"  - {col}: {choice['transform']} (offset {choice['offset']:g})")
    print(f"\nTransformed features: {data.features('transformed').shape[1]}")
    print(f"Encoded features: {data.features('encoded').shape[1]}")
    print("=" * 50 + "\n")

"""
Test Suite for Preprocessing Module
===================================

Tests for outlier filtering, factorization, imputation, variance-stabilizing
transforms, one-hot encoding and the full preprocessing pipeline.
"""

import pytest
import numpy as np
import pandas as pd
import tempfile
import os

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from bikerental.data_loader import EXPECTED_CATEGORIES
from bikerental.preprocessing import (
    OUTLIER_COLUMNS,
    TRANSFORMS,
    VarianceStabilizer,
    add_precipitation_flag,
    align_rows,
    factorize_categoricals,
    impute_median,
    inject_missing_values,
    normality_test,
    one_hot_encode,
    preprocess_pipeline,
    remove_outliers,
    standardize,
)


class TestPrecipitationFlag:
    """Tests for add_precipitation_flag."""

    def test_flag_marks_rain_or_snow(self, rental_frame):
        """Test that the flag marks rain or snow hours."""
        flagged = add_precipitation_flag(rental_frame)

        wet = (rental_frame["rainfall"] > 0) | (rental_frame["snowfall"] > 0)
        assert (flagged["precipitation"] == wet.astype(int)).all()

    def test_input_not_modified(self, rental_frame):
        """Test that the input frame is left unchanged."""
        add_precipitation_flag(rental_frame)
        assert "precipitation" not in rental_frame.columns


class TestRemoveOutliers:
    """Tests for remove_outliers."""

    def test_retained_rows_within_window(self, rental_frame):
        """Test that kept rows lie within the z window."""
        filtered, _ = remove_outliers(rental_frame, OUTLIER_COLUMNS, threshold=3.0)
        z = standardize(rental_frame, OUTLIER_COLUMNS).loc[filtered.index, OUTLIER_COLUMNS]

        assert (z.abs() <= 3.0).all().all()

    def test_report_counts(self, rental_frame):
        """Test the removal report."""
        filtered, report = remove_outliers(rental_frame)

        assert report['n_before'] == len(rental_frame)
        assert report['n_after'] == len(filtered)
        assert report['n_removed'] == len(rental_frame) - len(filtered)
        assert report['n_removed'] > 0
        assert set(report['by_column']) == set(OUTLIER_COLUMNS)

    def test_column_order_does_not_matter(self, rental_frame):
        """Test that column order does not change the result."""
        forward, _ = remove_outliers(rental_frame, OUTLIER_COLUMNS)
        backward, _ = remove_outliers(rental_frame, list(reversed(OUTLIER_COLUMNS)))

        assert forward.index.equals(backward.index)

    def test_align_rows_keeps_representations_in_sync(self, rental_frame):
        """Test that align_rows follows the filtered index."""
        encoded = one_hot_encode(factorize_categoricals(rental_frame))
        filtered, _ = remove_outliers(rental_frame)
        synced = align_rows(encoded, filtered)

        assert synced.index.equals(filtered.index)
        assert (synced["temperature"] == filtered["temperature"]).all()


class TestFactorizeCategoricals:
    """Tests for factorize_categoricals."""

    def test_categorical_dtype(self, rental_frame):
        """Test fixed category lists."""
        factored = factorize_categoricals(rental_frame)

        for col, expected in EXPECTED_CATEGORIES.items():
            assert isinstance(factored[col].dtype, pd.CategoricalDtype)
            assert list(factored[col].cat.categories) == expected

    def test_unexpected_value_raises(self, rental_frame):
        """Test that an unknown level raises."""
        frame = rental_frame.copy()
        frame.loc[0, "holiday"] = "Maybe"

        with pytest.raises(ValueError, match="holiday"):
            factorize_categoricals(frame)

    def test_missing_level_raises(self, rental_frame):
        """Test that an absent level raises."""
        frame = rental_frame[rental_frame["seasons"] != "Winter"]

        with pytest.raises(ValueError, match="seasons"):
            factorize_categoricals(frame)


class TestMissingValues:
    """Tests for missing-value injection and median imputation."""

    def test_injection_rate(self, rental_frame):
        """Test the injected fraction per column."""
        injected = inject_missing_values(rental_frame, ["temperature", "humidity"], fraction=0.05)

        expected = int(round(len(rental_frame) * 0.05))
        assert injected["temperature"].isna().sum() == expected
        assert injected["humidity"].isna().sum() == expected
        assert injected["wind_speed"].isna().sum() == 0

    def test_injection_rejects_categorical(self, rental_frame):
        """Test that categorical columns are rejected."""
        with pytest.raises(ValueError, match="non-numeric"):
            inject_missing_values(rental_frame, ["seasons"])

    def test_imputation_fills_medians(self, rental_frame):
        """Test that holes receive the column median."""
        columns = ["temperature", "humidity", "rainfall"]
        injected = inject_missing_values(rental_frame, columns, random_state=3)
        imputed, medians = impute_median(injected, columns)

        assert imputed[columns].isna().sum().sum() == 0
        for col in columns:
            holes = injected[col].isna()
            assert medians[col] == pytest.approx(injected[col].median())
            assert (imputed.loc[holes, col] == injected[col].median()).all()
            assert (imputed.loc[~holes, col] == injected.loc[~holes, col]).all()


class TestVarianceStabilizer:
    """Tests for VarianceStabilizer."""

    @pytest.fixture
    def skewed_frame(self):
        """Create columns with known skew."""
        rng = np.random.default_rng(7)
        return pd.DataFrame({
            'lognormal': rng.lognormal(mean=1.0, sigma=0.9, size=3000),
            'normal': rng.normal(50, 5, size=3000),
            'with_zeros': np.where(rng.random(3000) < 0.3, 0.0, rng.exponential(2.0, 3000)),
        })

    def test_transform_before_fit(self, skewed_frame):
        """Test that transform raises before fit."""
        with pytest.raises(ValueError, match="must be fitted"):
            VarianceStabilizer(columns=['lognormal']).transform(skewed_frame)

    def test_sample_size_limit(self):
        """Test that samples above 5000 are rejected."""
        with pytest.raises(ValueError):
            VarianceStabilizer(sample_size=6000)

    def test_lognormal_gets_transformed(self, skewed_frame):
        """Test that a lognormal column is transformed."""
        stabilizer = VarianceStabilizer(columns=['lognormal']).fit(skewed_frame)

        assert stabilizer.choices_['lognormal']['transform'] != 'none'

    def test_normal_left_untransformed(self, skewed_frame):
        """Test that a normal column is left alone."""
        stabilizer = VarianceStabilizer(columns=['normal'], min_improvement=0.01).fit(skewed_frame)

        assert stabilizer.choices_['normal']['transform'] == 'none'

    def test_offset_keeps_inputs_positive(self, skewed_frame):
        """Test the offset for columns containing zeros."""
        stabilizer = VarianceStabilizer(columns=['with_zeros']).fit(skewed_frame)
        choice = stabilizer.choices_['with_zeros']

        assert choice['offset'] == pytest.approx(1.0)
        assert np.isfinite(stabilizer.transform(skewed_frame)['with_zeros']).all()

    @pytest.mark.parametrize("name", TRANSFORMS)
    def test_round_trip(self, skewed_frame, name):
        """Test that inverse_transform recovers the input."""
        stabilizer = VarianceStabilizer(columns=['lognormal', 'with_zeros']).fit(skewed_frame)
        for col in stabilizer.choices_:
            stabilizer.choices_[col]['transform'] = name

        recovered = stabilizer.inverse_transform(stabilizer.transform(skewed_frame))

        np.testing.assert_allclose(recovered.values, skewed_frame.values, rtol=1e-9, atol=1e-9)

    def test_scores_recorded(self, skewed_frame):
        """Test that W and p are recorded per candidate."""
        stabilizer = VarianceStabilizer(columns=['lognormal']).fit(skewed_frame)
        summary = stabilizer.summary()

        assert list(summary['column']) == ['lognormal']
        for name in TRANSFORMS:
            assert f'{name}_w' in summary.columns

    def test_save_load(self, skewed_frame):
        """Test saving and loading the fitted stabilizer."""
        stabilizer = VarianceStabilizer(columns=['lognormal']).fit(skewed_frame)

        with tempfile.NamedTemporaryFile(suffix='.joblib', delete=False) as f:
            temp_path = f.name

        try:
            stabilizer.save(temp_path)
            loaded = VarianceStabilizer.load(temp_path)

            assert loaded.choices_ == stabilizer.choices_
            pd.testing.assert_frame_equal(loaded.transform(skewed_frame), stabilizer.transform(skewed_frame))
        finally:
            os.unlink(temp_path)

    def test_normality_test_limit(self):
        """Test that oversized samples must be subsampled."""
        with pytest.raises(ValueError, match="subsample"):
            normality_test(np.arange(5001, dtype=float))


class TestOneHotEncode:
    """Tests for one_hot_encode."""

    def test_exactly_one_indicator_per_feature(self, rental_frame):
        """Test one active indicator per categorical."""
        encoded = one_hot_encode(factorize_categoricals(rental_frame))

        for col, levels in EXPECTED_CATEGORIES.items():
            indicators = [f"{col}_{level}" for level in levels]
            assert all(c in encoded.columns for c in indicators)
            assert len([c for c in encoded.columns if c.startswith(f"{col}_")]) == len(levels)
            assert set(np.unique(encoded[indicators].values)) <= {0.0, 1.0}
            assert (encoded[indicators].sum(axis=1) == 1).all()

    def test_originals_removed(self, rental_frame):
        """Test that source columns are replaced."""
        encoded = one_hot_encode(factorize_categoricals(rental_frame))

        for col in EXPECTED_CATEGORIES:
            assert col not in encoded.columns


class TestPreprocessPipeline:
    """Tests for preprocess_pipeline."""

    def test_representations_aligned(self, prepared):
        """Test that both tables share an index."""
        assert prepared.transformed.index.equals(prepared.encoded.index)
        assert prepared.transformed.index.equals(prepared.target.index)
        assert len(prepared) == prepared.outlier_report['n_after']

    def test_features_exclude_date_and_target(self, prepared):
        """Test that date and target are not features."""
        for representation in ('transformed', 'encoded'):
            features = prepared.features(representation)
            assert 'date' not in features.columns
            assert 'rented_bike_count' not in features.columns

    def test_encoded_features_numeric(self, prepared):
        """Test that encoded features are numeric."""
        features = prepared.features('encoded')
        assert all(pd.api.types.is_numeric_dtype(features[c]) for c in features.columns)

    def test_unknown_representation(self, prepared):
        """Test that an unknown representation raises."""
        with pytest.raises(ValueError):
            prepared.features('raw')

    def test_subset_keeps_alignment(self, prepared):
        """Test that subset keeps tables aligned."""
        part = prepared.subset([0, 5, 9])

        assert len(part) == 3
        assert part.transformed.index.equals(part.encoded.index)
        assert list(part.target) == list(prepared.target.iloc[[0, 5, 9]])

    def test_missing_value_demo(self, rental_frame):
        """Test the imputation demo records medians and fraction."""
        data = preprocess_pipeline(rental_frame, {'inject_missing': True, 'random_state': 1})

        assert set(data.medians) == set(OUTLIER_COLUMNS)
        assert data.missing_fraction == 0.05
        assert data.transformed[OUTLIER_COLUMNS].isna().sum().sum() == 0

    def test_missing_value_demo_leaves_model_inputs_observed(self, rental_frame):
        """Test that the imputation demo never replaces values the models see."""
        config = {'inject_missing': True, 'missing_fraction': 0.2, 'random_state': 1}
        data = preprocess_pipeline(rental_frame, config)
        baseline = preprocess_pipeline(rental_frame, {'random_state': 1})

        observed = rental_frame.loc[data.transformed.index, OUTLIER_COLUMNS]
        restored = data.stabilizer.inverse_transform(data.transformed)[OUTLIER_COLUMNS]

        np.testing.assert_allclose(restored.to_numpy(), observed.to_numpy(), rtol=1e-9, atol=1e-9)
        pd.testing.assert_frame_equal(data.encoded, baseline.encoded)

    def test_target_on_original_scale(self, prepared, rental_frame):
        """Test that the target is not transformed."""
        original = rental_frame.loc[prepared.target.index, 'rented_bike_count']
        assert (prepared.target == original).all()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Test Suite for Cross-Validation Module
======================================

Tests for fold partitioning and the k-fold MAD harness.
"""

from functools import partial

import pytest
import numpy as np

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from bikerental.cross_validation import cross_validate, kfold_indices
from bikerental.model import KNNRentalModel, MeanBaselineModel, build_model


class TestKFoldIndices:
    """Tests for kfold_indices."""

    def test_disjoint_and_complete(self):
        """Test that folds cover every row exactly once."""
        folds = kfold_indices(103, n_folds=5, random_state=1)
        combined = np.concatenate(folds)

        assert len(combined) == 103
        assert sorted(combined) == list(range(103))

    def test_block_sizes(self):
        """Test that the last fold absorbs the remainder."""
        folds = kfold_indices(23, n_folds=5)

        assert [len(f) for f in folds] == [4, 4, 4, 4, 7]

    def test_even_split(self):
        """Test equal folds when rows divide evenly."""
        folds = kfold_indices(100, n_folds=5)

        assert [len(f) for f in folds] == [20] * 5

    def test_reproducible(self):
        """Test that the seed fixes the partition."""
        a = kfold_indices(50, random_state=9)
        b = kfold_indices(50, random_state=9)
        c = kfold_indices(50, random_state=10)

        assert all(np.array_equal(x, y) for x, y in zip(a, b))
        assert not all(np.array_equal(x, y) for x, y in zip(a, c))

    def test_too_few_rows(self):
        """Test that fewer rows than folds raises."""
        with pytest.raises(ValueError):
            kfold_indices(3, n_folds=5)

    def test_single_fold_rejected(self):
        """Test that a single fold is rejected."""
        with pytest.raises(ValueError):
            kfold_indices(10, n_folds=1)


class TestCrossValidate:
    """Tests for the k-fold MAD harness."""

    def test_baseline_matches_direct_computation(self, prepared):
        """Test mean-baseline MAD against a per-fold computation by hand."""
        result = cross_validate(prepared, {'baseline': MeanBaselineModel}, n_folds=5, random_state=4)

        target = prepared.target.to_numpy()
        all_positions = np.arange(len(target))
        expected = []
        for test_pos in kfold_indices(len(target), 5, random_state=4):
            train_mean = target[np.setdiff1d(all_positions, test_pos)].mean()
            expected.append(np.mean(np.abs(target[test_pos] - train_mean)))

        np.testing.assert_allclose(result['mad']['baseline'], expected)
        assert result['mean_mad']['baseline'] == pytest.approx(np.mean(expected))

    def test_result_structure(self, prepared):
        """Test the per-fold and mean MAD entries."""
        factories = {
            'knn': partial(KNNRentalModel, n_neighbors=5),
            'tree': partial(build_model, 'tree'),
            'linear': partial(build_model, 'linear'),
            'baseline': MeanBaselineModel,
        }
        result = cross_validate(prepared, factories, n_folds=5)

        assert result['n_folds'] == 5
        assert sum(result['fold_sizes']) == len(prepared)
        assert set(result['mean_mad']) == set(factories)
        for name, values in result['mad'].items():
            assert len(values) == 5
            assert result['mean_mad'][name] == pytest.approx(np.mean(values))

    def test_models_beat_baseline(self, prepared):
        """Test that the tree beats the mean baseline."""
        factories = {
            'tree': partial(build_model, 'tree'),
            'baseline': MeanBaselineModel,
        }
        result = cross_validate(prepared, factories, n_folds=5)

        assert result['mean_mad']['tree'] < result['mean_mad']['baseline']

    def test_fresh_model_per_fold(self, prepared):
        """Test that each fold trains a new model instance."""
        created = []

        def factory():
            model = MeanBaselineModel()
            created.append(model)
            return model

        cross_validate(prepared, {'baseline': factory}, n_folds=4)

        assert len(created) == 4
        assert len({id(m) for m in created}) == 4


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""Tests for sample alignment."""
import pytest
import numpy as np
import pandas as pd

from de_analysis.alignment import align_samples
from de_analysis.exceptions import AlignmentError


class TestAlignSamples:
    """Tests for align_samples."""

    def test_columns_follow_metadata_order(self, synthetic_data, shuffled_metadata, groups):
        expression, _ = synthetic_data
        expr, meta = align_samples(expression, shuffled_metadata, groups=groups)
        assert list(expr.columns) == list(meta.index)
        assert list(meta.index) == list(shuffled_metadata.index)
        assert expr.shape[1] == meta.shape[0]

    def test_values_move_with_their_sample(self, synthetic_data, shuffled_metadata):
        expression, _ = synthetic_data
        expr, _ = align_samples(expression, shuffled_metadata)
        sample = shuffled_metadata.index[0]
        pd.testing.assert_series_equal(expr[sample], expression[sample])

    def test_drops_unassigned_samples(self, synthetic_data, groups):
        expression, metadata = synthetic_data
        metadata = metadata.copy()
        metadata.iloc[0, 0] = np.nan
        metadata.iloc[1, 0] = ""
        metadata.iloc[2, 0] = "Polyp"
        expr, meta = align_samples(expression, metadata, groups=groups)
        assert meta.shape[0] == 9
        assert list(expr.columns) == list(meta.index)
        assert metadata.index[2] not in expr.columns

    def test_extra_expression_columns_are_ignored(self, synthetic_data):
        expression, metadata = synthetic_data
        expr, meta = align_samples(expression, metadata.iloc[:6])
        assert expr.shape[1] == 6
        assert list(expr.columns) == list(meta.index)

    def test_missing_expression_column_raises(self, synthetic_data):
        expression, metadata = synthetic_data
        with pytest.raises(AlignmentError):
            align_samples(expression.drop(columns=metadata.index[3]), metadata)

    def test_duplicated_features_raise(self, synthetic_data):
        expression, metadata = synthetic_data
        duplicated = pd.concat([expression, expression.iloc[:1]])
        with pytest.raises(AlignmentError):
            align_samples(duplicated, metadata)

    def test_duplicated_metadata_samples_raise(self, synthetic_data):
        expression, metadata = synthetic_data
        with pytest.raises(AlignmentError):
            align_samples(expression, pd.concat([metadata, metadata.iloc[:1]]))

    def test_missing_group_column_raises(self, synthetic_data):
        expression, metadata = synthetic_data
        with pytest.raises(AlignmentError):
            align_samples(expression, metadata.rename(columns={"group": "tissue"}))

"""Tests for mutual nearest neighbours alignment."""

import numpy as np
import pandas as pd
import pytest

from sepstrat.alignment.mnn import (
    INPUT_BATCH,
    REFERENCE_BATCH,
    AlignmentConfig,
    adjust_shift_variance,
    align_to_reference,
    average_pair_vectors,
    cosine_normalize,
    effective_k,
    find_mutual_neighbours,
    mnn_correct,
    scale_extremes,
    smooth_gaussian_kernel,
)
from sepstrat.exceptions import AlignmentFailure, ColumnMismatch

RAW = dict(cos_norm_in=False, cos_norm_out=False)


def _frame(values, prefix="s"):
    values = np.asarray(values, dtype=float)
    return pd.DataFrame(
        values,
        index=[f"{prefix}{i}" for i in range(values.shape[0])],
        columns=[f"g{j}" for j in range(values.shape[1])],
    )


class TestAlignmentConfig:
    """Tests for AlignmentConfig validation."""

    def test_defaults(self):
        """Test default parameters."""
        config = AlignmentConfig()
        assert config.k == 20
        assert config.sigma == 0.1
        assert config.cos_norm_in and config.cos_norm_out and config.var_adj
        assert config.smoothing == "gaussian"

    @pytest.mark.parametrize("k", [0, -3, 2.5, True])
    def test_invalid_k(self, k):
        """Test non-positive or non-integer k is rejected."""
        with pytest.raises(ValueError, match="positive integer"):
            AlignmentConfig(k=k)

    def test_invalid_smoothing(self):
        """Test unknown smoothing method is rejected."""
        with pytest.raises(ValueError, match="smoothing"):
            AlignmentConfig(smoothing="median")

    def test_invalid_sigma(self):
        """Test non-positive sigma is rejected."""
        with pytest.raises(ValueError, match="sigma"):
            AlignmentConfig(sigma=0.0)

    def test_from_cfg_none_uses_defaults(self):
        """Test building without a config keeps defaults and explicit k."""
        config = AlignmentConfig.from_cfg(None, k=7)
        assert config.k == 7
        assert config.sigma == 0.1


class TestEffectiveK:
    """Tests for the neighbour count cap."""

    def test_k_below_available_unchanged(self):
        assert effective_k(3, 10) == 3

    def test_k_at_or_above_available_capped(self):
        assert effective_k(10, 10) == 9
        assert effective_k(50, 4) == 3

    def test_k_equal_to_available_capped(self):
        """Test k == available also drops by one."""
        assert effective_k(3, 3) == 2

    def test_single_candidate(self):
        assert effective_k(5, 1) == 1


class TestFindMutualNeighbours:
    """Tests for mutual nearest neighbour search."""

    def test_simple_pairs(self):
        """Test that obvious correspondences are mutual."""
        target = np.array([[0.0, 0.0], [10.0, 0.0]])
        anchor = np.array([[0.1, 0.0], [10.2, 0.0], [5.0, 5.0]])

        t_idx, a_idx, _, _ = find_mutual_neighbours(target, anchor, k=1)

        assert list(zip(t_idx, a_idx)) == [(0, 0), (1, 1)]

    def test_pairs_are_mutual(self):
        """Test every returned pair is in both k-neighbour lists."""
        np.random.seed(42)
        target = np.random.randn(15, 4)
        anchor = np.random.randn(20, 4) + 0.5
        k = 4

        t_idx, a_idx, k_target, k_anchor = find_mutual_neighbours(target, anchor, k)
        dist = ((target[:, None, :] - anchor[None, :, :]) ** 2).sum(-1)

        assert k_target == k_anchor == k
        assert len(t_idx) > 0
        for t, a in zip(t_idx, a_idx):
            assert a in np.argsort(dist[t], kind="stable")[:k]
            assert t in np.argsort(dist[:, a], kind="stable")[:k]

    def test_closest_pair_always_found(self):
        """Test the globally closest pair is mutual for any k."""
        np.random.seed(0)
        target = np.random.randn(6, 3)
        anchor = np.random.randn(8, 3) + 3.0
        dist = ((target[:, None, :] - anchor[None, :, :]) ** 2).sum(-1)
        t_best, a_best = np.unravel_index(np.argmin(dist), dist.shape)

        t_idx, a_idx, _, _ = find_mutual_neighbours(target, anchor, k=1)

        assert (t_best, a_best) in set(zip(t_idx, a_idx))

    def test_k_equal_to_batch_sizes(self):
        """Test k equal to both batch sizes is capped on both sides."""
        np.random.seed(1)
        target = np.random.randn(3, 4)
        anchor = np.random.randn(3, 4)

        _, _, k_target, k_anchor = find_mutual_neighbours(target, anchor, k=3)

        assert k_target == k_anchor == 2


class TestCorrectionComponents:
    """Tests for pair averaging, smoothing and variance adjustment."""

    def test_average_pair_vectors(self):
        """Test vectors are averaged per paired target sample."""
        target = np.array([[0.0, 0.0], [1.0, 1.0]])
        anchor = np.array([[2.0, 0.0], [0.0, 2.0], [5.0, 5.0]])

        paired, averaged = average_pair_vectors(
            target, anchor, np.array([0, 0, 1]), np.array([0, 1, 2])
        )

        assert list(paired) == [0, 1]
        np.testing.assert_allclose(averaged[0], [1.0, 1.0])
        np.testing.assert_allclose(averaged[1], [4.0, 4.0])

    def test_smoothing_preserves_constant_vectors(self):
        """Test kernel weights sum to one for every target row."""
        np.random.seed(1)
        target = np.random.randn(12, 3)
        averaged = np.tile([0.5, -1.0, 2.0], (4, 1))

        smoothed = smooth_gaussian_kernel(averaged, np.array([0, 3, 5, 9]), target, sigma=0.1)

        np.testing.assert_allclose(smoothed, np.tile([0.5, -1.0, 2.0], (12, 1)), atol=1e-10)

    def test_smoothing_far_rows_do_not_underflow(self):
        """Test rows far from every paired sample still get finite corrections."""
        target = np.array([[0.0, 0.0], [0.1, 0.0], [100.0, 100.0]])
        averaged = np.array([[1.0, 0.0], [0.0, 1.0]])

        smoothed = smooth_gaussian_kernel(averaged, np.array([0, 1]), target, sigma=0.01)

        assert np.isfinite(smoothed).all()

    def test_variance_scale_at_least_one(self):
        """Test variance adjustment never shrinks corrections."""
        np.random.seed(2)
        anchor = np.random.randn(30, 5) * 2.0
        target = np.random.randn(20, 5) + 1.0
        correction = np.random.randn(20, 5)
        correction[3] = 0.0

        scale = adjust_shift_variance(anchor, target, correction, sigma=1.0)

        assert scale.shape == (20,)
        assert (scale >= 1.0).all()
        assert scale[3] == 1.0


class TestMnnCorrect:
    """Tests for the full correction."""

    def test_shift_is_reduced(self):
        """Test a translated batch moves towards the anchor."""
        np.random.seed(42)
        anchor = np.random.randn(40, 3)
        target = np.random.randn(30, 3) + np.array([3.0, 0.0, 0.0])
        data = _frame(np.vstack([anchor, target]))
        batch = [1] * 40 + [2] * 30

        result = mnn_correct(
            data, batch, merge_order=[1, 2],
            config=AlignmentConfig(k=10, sigma=1.0, var_adj=False, **RAW),
        )

        before = np.linalg.norm(target.mean(0) - anchor.mean(0))
        after = np.linalg.norm(result.rows(2).to_numpy().mean(0) - anchor.mean(0))
        assert after < before

    def test_anchor_rows_unchanged(self):
        """Test the anchor batch is never corrected."""
        np.random.seed(3)
        values = np.vstack([np.random.randn(10, 4), np.random.randn(8, 4) + 1.0])
        data = _frame(values)

        result = mnn_correct(data, [1] * 10 + [2] * 8, config=AlignmentConfig(k=3, **RAW))

        np.testing.assert_allclose(result.aligned.iloc[:10].to_numpy(), values[:10])
        np.testing.assert_allclose(result.corrections.iloc[:10].to_numpy(), 0.0)
        assert not result.outliers[:10].any()

    def test_output_preserves_rows_and_columns(self):
        """Test aligned matrix keeps index, columns and row order."""
        np.random.seed(4)
        data = _frame(np.random.randn(12, 5) + 5.0)
        batch = [2, 1] * 6

        result = mnn_correct(data, batch, merge_order=[1, 2], config=AlignmentConfig(k=2))

        assert result.aligned.index.equals(data.index)
        assert result.aligned.columns.equals(data.columns)
        np.testing.assert_array_equal(result.batch, batch)

    def test_unpaired_sample_is_outlier_and_uncorrected(self):
        """Test a far away sample gets no pair, no correction and an outlier flag."""
        np.random.seed(5)
        anchor = np.random.randn(10, 3)
        target = np.vstack([np.random.randn(10, 3) + 0.3, [[100.0, 100.0, 100.0]]])
        data = _frame(np.vstack([anchor, target]))

        result = mnn_correct(
            data, [1] * 10 + [2] * 11, merge_order=[1, 2],
            config=AlignmentConfig(k=2, sigma=1.0, **RAW),
        )

        far = 20
        assert result.outliers[far]
        assert result.pair_counts()[far] == 0
        np.testing.assert_allclose(result.aligned.iloc[far].to_numpy(), [100.0, 100.0, 100.0])
        np.testing.assert_allclose(result.corrections.iloc[far].to_numpy(), 0.0)

    def test_outliers_match_pair_counts(self):
        """Test outlier flags are exactly the merged rows without pairs."""
        np.random.seed(6)
        anchor = np.random.randn(25, 4)
        target = np.random.randn(25, 4) * 2.0 + 1.0
        data = _frame(np.vstack([anchor, target]))
        batch = np.array([1] * 25 + [2] * 25)

        result = mnn_correct(data, batch, config=AlignmentConfig(k=3))

        counts = result.pair_counts()
        np.testing.assert_array_equal(result.outliers[batch == 2], counts[batch == 2] == 0)

    def test_cosine_output_has_unit_norm_for_anchor(self):
        """Test cos_norm_out returns cosine-normalised anchor rows."""
        np.random.seed(7)
        data = _frame(np.random.rand(16, 6) + 1.0)

        result = mnn_correct(data, [1] * 10 + [2] * 6, config=AlignmentConfig(k=3))

        norms = np.linalg.norm(result.aligned.iloc[:10].to_numpy(), axis=1)
        np.testing.assert_allclose(norms, 1.0)

    def test_original_scale_output(self):
        """Test cos_norm_out=False keeps the original scale of anchor rows."""
        np.random.seed(8)
        values = np.random.rand(16, 6) + 1.0

        result = mnn_correct(
            _frame(values), [1] * 10 + [2] * 6,
            config=AlignmentConfig(k=3, cos_norm_out=False),
        )

        np.testing.assert_allclose(result.aligned.iloc[:10].to_numpy(), values[:10])

    def test_three_batches_sequential(self):
        """Test later batches are merged onto the cumulative result."""
        np.random.seed(9)
        values = np.vstack([
            np.random.randn(10, 3),
            np.random.randn(10, 3) + 1.0,
            np.random.randn(10, 3) - 1.0,
        ])
        batch = ["a"] * 10 + ["b"] * 10 + ["c"] * 10

        result = mnn_correct(
            _frame(values), batch, merge_order=["a", "c", "b"],
            config=AlignmentConfig(k=3, sigma=1.0, **RAW),
        )

        assert [step.batch for step in result.steps] == ["c", "b"]
        # Batch b may pair with rows of a or of the already merged c
        anchors_b = {p.anchor for p in result.steps[1].pairs}
        assert anchors_b <= set(range(0, 10)) | set(range(20, 30))
        for p in result.steps[1].pairs:
            assert 10 <= p.target < 20

    def test_merge_order_must_cover_batches(self):
        """Test inconsistent merge order is rejected."""
        data = _frame(np.random.randn(6, 2))
        with pytest.raises(ValueError, match="merge_order"):
            mnn_correct(data, [1, 1, 1, 2, 2, 2], merge_order=[1, 3])

    def test_single_batch_rejected(self):
        """Test alignment needs two batches."""
        data = _frame(np.random.randn(6, 2))
        with pytest.raises(ValueError, match="two batches"):
            mnn_correct(data, [1] * 6)

    def test_batch_length_mismatch(self):
        """Test one tag per row is required."""
        data = _frame(np.random.randn(6, 2))
        with pytest.raises(ValueError, match="batch tags"):
            mnn_correct(data, [1, 2])


class TestScaleExtremes:
    """Tests for the original-scale outlier check."""

    def test_flags_rows_outside_on_every_gene(self):
        anchor = np.array([[0.0, 0.0], [1.0, 2.0], [2.0, 1.0]])
        target = np.array([
            [1.0, 1.0],
            [50.0, 50.0],
            [50.0, 1.0],
            [-50.0, -50.0],
        ])

        mask = scale_extremes(target, anchor, n_sd=5.0)

        np.testing.assert_array_equal(mask, [False, True, False, True])

    def test_single_anchor_row(self):
        """Test one anchor row means any row outside its value on every gene."""
        anchor = np.array([[1.0, 1.0]])
        target = np.array([[1.0, 2.0], [2.0, 0.5]])

        np.testing.assert_array_equal(scale_extremes(target, anchor, 5.0), [False, True])

    def test_scaled_copy_is_excluded_from_pairs(self):
        """Test a scaled copy of an anchor row is left unpaired under cosine normalisation."""
        np.random.seed(11)
        anchor = np.random.rand(10, 4) + 1.0
        target = np.vstack([anchor[0] * 30, anchor[0], anchor[1]])
        data = _frame(np.vstack([target, anchor]))
        batch = [2] * 3 + [1] * 10

        result = mnn_correct(data, batch, merge_order=[1, 2], config=AlignmentConfig(k=3))

        assert result.outliers[0]
        assert result.pair_counts()[0] == 0
        np.testing.assert_allclose(result.corrections.iloc[0].to_numpy(), 0.0)
        assert not result.outliers[1:3].any()

    def test_check_disabled(self):
        """Test outlier_sd=None lets the scaled copy pair again."""
        np.random.seed(11)
        anchor = np.random.rand(10, 4) + 1.0
        target = np.vstack([anchor[0] * 30, anchor[0], anchor[1]])
        data = _frame(np.vstack([target, anchor]))
        batch = [2] * 3 + [1] * 10

        result = mnn_correct(
            data, batch, merge_order=[1, 2],
            config=AlignmentConfig(k=3, outlier_sd=None),
        )

        assert result.pair_counts()[0] > 0

    def test_whole_batch_offset_is_aligned(self):
        """Test a batch lying entirely outside the anchor range is still corrected."""
        np.random.seed(12)
        anchor = np.random.randn(20, 3)
        target = np.random.randn(15, 3) + 50.0
        data = _frame(np.vstack([anchor, target]))
        batch = [1] * 20 + [2] * 15
        config = AlignmentConfig(k=5, sigma=1.0, var_adj=False, **RAW)
        assert scale_extremes(target, anchor, config.outlier_sd).all()

        result = mnn_correct(data, batch, merge_order=[1, 2], config=config)

        after = result.rows(2).to_numpy().mean(0)
        assert np.linalg.norm(after - anchor.mean(0)) < np.linalg.norm(target.mean(0) - anchor.mean(0))
        assert len(result.pairs) > 0

    def test_invalid_outlier_sd(self):
        with pytest.raises(ValueError, match="outlier_sd"):
            AlignmentConfig(outlier_sd=0.0)


class TestAlignmentFailures:
    """Tests for degenerate inputs."""

    def test_nan_values(self):
        values = np.random.randn(8, 3)
        values[5, 1] = np.nan
        with pytest.raises(AlignmentFailure, match="non-finite"):
            mnn_correct(_frame(values), [1] * 4 + [2] * 4)

    def test_non_numeric_column(self):
        data = _frame(np.random.randn(8, 3))
        data["g1"] = "high"
        with pytest.raises(AlignmentFailure, match="Non-numeric"):
            mnn_correct(data, [1] * 4 + [2] * 4)

    def test_zero_profile_under_cosine_normalisation(self):
        values = np.random.rand(8, 3) + 1.0
        values[6] = 0.0
        with pytest.raises(AlignmentFailure, match="all-zero"):
            mnn_correct(_frame(values), [1] * 4 + [2] * 4)

    def test_empty_matrix(self):
        data = pd.DataFrame(columns=["g0", "g1"], dtype=float)
        with pytest.raises(AlignmentFailure, match="empty"):
            mnn_correct(data, [])

    def test_cosine_normalize_zero_row(self):
        with pytest.raises(AlignmentFailure):
            cosine_normalize(np.array([[1.0, 2.0], [0.0, 0.0]]))


class TestAlignToReference:
    """Tests for the input-onto-reference convenience."""

    def test_merged_layout(self):
        """Test input rows come first and reference is the anchor."""
        np.random.seed(10)
        samples = _frame(np.random.rand(5, 4) + 1.0, prefix="p")
        reference = _frame(np.random.rand(9, 4) + 1.0, prefix="r")

        result = align_to_reference(samples, reference, AlignmentConfig(k=2))

        assert list(result.aligned.index) == list(samples.index) + list(reference.index)
        assert (result.batch[:5] == INPUT_BATCH).all()
        assert (result.batch[5:] == REFERENCE_BATCH).all()
        assert [step.batch for step in result.steps] == [INPUT_BATCH]
        assert all(p.target < 5 <= p.anchor for p in result.pairs)

    def test_column_order_mismatch(self):
        """Test differing column order is a ColumnMismatch."""
        samples = _frame(np.random.rand(4, 3))
        reference = _frame(np.random.rand(6, 3))[["g2", "g1", "g0"]]
        with pytest.raises(ColumnMismatch, match="order"):
            align_to_reference(samples, reference)

    def test_missing_column(self):
        """Test a missing reference column is a ColumnMismatch."""
        samples = _frame(np.random.rand(4, 3)).drop(columns=["g1"])
        reference = _frame(np.random.rand(6, 3))
        with pytest.raises(ColumnMismatch, match="g1"):
            align_to_reference(samples, reference)

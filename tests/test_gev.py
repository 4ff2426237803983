"""
Unit tests for spatial_gev.gev module.

Tests the GEV/Gumbel log-densities, the shape reparametrization policy,
the shape prior and the data-layer accumulator.
"""

import numpy as np
import pytest
from scipy import stats

from spatial_gev.exceptions import DataError
from spatial_gev.gev import (
    FLAT_PRIOR_SD,
    ShapeReparam,
    accumulate_data_nll,
    gev_logpdf,
    gumbel_logpdf,
    observation_index,
    shape_prior_nll,
    transform_shape,
)


class TestLogDensities:
    """Test the observation-level log-densities."""

    def test_gumbel_matches_scipy(self):
        x = np.array([-1.0, 0.3, 2.0, 7.5])
        np.testing.assert_allclose(
            gumbel_logpdf(x, 0.5, np.log(1.8)),
            stats.gumbel_r.logpdf(x, loc=0.5, scale=1.8),
            rtol=1e-12,
        )

    def test_gumbel_formula(self):
        t = 1.0
        np.testing.assert_allclose(gumbel_logpdf(1.0, 0.0, 0.0), -np.exp(-t) - t)

    @pytest.mark.parametrize("s", [-0.3, 0.1, 0.45])
    def test_gev_matches_scipy(self, s):
        """scipy's genextreme uses c = -s."""
        x = np.array([0.2, 1.0, 1.9])
        np.testing.assert_allclose(
            gev_logpdf(x, 0.5, np.log(1.2), s),
            stats.genextreme.logpdf(x, -s, loc=0.5, scale=1.2),
            rtol=1e-10,
        )

    @pytest.mark.parametrize("x", [-2.0, 0.0, 1.0, 3.5])
    def test_gumbel_is_zero_shape_limit(self, x):
        np.testing.assert_allclose(
            gev_logpdf(x, 0.3, np.log(1.4), 1e-7),
            gumbel_logpdf(x, 0.3, np.log(1.4)),
            atol=1e-5,
        )
        np.testing.assert_allclose(
            gev_logpdf(x, 0.3, np.log(1.4), -1e-7),
            gumbel_logpdf(x, 0.3, np.log(1.4)),
            atol=1e-5,
        )

    def test_outside_support_is_non_finite(self):
        """1 + s (x - a) / b <= 0 propagates NaN instead of raising."""
        with np.errstate(invalid="ignore"):
            value = gev_logpdf(-3.0, 0.0, 0.0, 0.5)
        assert not np.isfinite(value)


class TestShapeReparam:
    """Test shape storage policies."""

    @pytest.mark.parametrize("stored", [-30.0, -1.0, 0.0, 2.0, 30.0])
    def test_positive_is_strictly_positive(self, stored):
        assert transform_shape(stored, ShapeReparam.POSITIVE) > 0

    @pytest.mark.parametrize("stored", [-30.0, -1.0, 0.0, 2.0, 30.0])
    def test_negative_is_strictly_negative(self, stored):
        assert transform_shape(stored, ShapeReparam.NEGATIVE) < 0

    def test_unconstrained_is_identity(self):
        assert transform_shape(-0.2, 3) == -0.2

    def test_coerce_by_name_and_flag(self):
        assert ShapeReparam.coerce("negative") is ShapeReparam.NEGATIVE
        assert ShapeReparam.coerce(" Positive ") is ShapeReparam.POSITIVE
        assert ShapeReparam.coerce(0) is ShapeReparam.ZERO
        assert ShapeReparam.coerce(ShapeReparam.UNCONSTRAINED) is ShapeReparam.UNCONSTRAINED

    def test_coerce_rejects_unknown(self):
        with pytest.raises(DataError, match="reparam_s"):
            ShapeReparam.coerce(4)
        with pytest.raises(DataError, match="Unknown shape"):
            ShapeReparam.coerce("sideways")


class TestShapePrior:
    """Test the normal prior on the stored shape."""

    @pytest.mark.parametrize("s_mean,s", [(0.0, 0.0), (-5.0, 3.0), (100.0, -40.0)])
    def test_flat_prior_is_exactly_zero(self, s_mean, s):
        assert shape_prior_nll(s, s_mean, FLAT_PRIOR_SD) == 0.0
        assert shape_prior_nll(s, s_mean, 1e6) == 0.0

    def test_normal_prior(self):
        np.testing.assert_allclose(
            shape_prior_nll(-1.5, -1.0, 0.5), -stats.norm.logpdf(-1.5, -1.0, 0.5)
        )


class TestObservationIndex:
    """Test mapping of observations to field entries."""

    def test_contiguous_blocks(self):
        np.testing.assert_array_equal(observation_index([2, 0, 3]), [0, 0, 2, 2, 2])

    def test_mesh_nodes(self):
        np.testing.assert_array_equal(
            observation_index([2, 0, 3], meshidxloc=[5, 7, 9]), [5, 5, 9, 9, 9]
        )


class TestAccumulateDataNLL:
    """Test the data-layer accumulator."""

    def setup_method(self):
        self.y = np.array([1.2, 0.4, 2.5, 1.9, 0.8])
        self.n_obs = np.array([2, 3])
        self.index = observation_index(self.n_obs)
        self.a = np.array([0.5, 1.0])
        self.log_b = np.array([np.log(1.1), np.log(0.7)])

    def test_single_location_gumbel(self):
        """y = [1, 2], one location, a = 0, b = 1."""
        nll = accumulate_data_nll(
            0.0, np.array([1.0, 2.0]), observation_index([2]),
            np.array([0.0]), 0.0, 0.0, reparam_s=0,
        )
        expected = -(gumbel_logpdf(1.0, 0.0, 0.0) + gumbel_logpdf(2.0, 0.0, 0.0))
        np.testing.assert_allclose(nll, expected, rtol=1e-15)
        np.testing.assert_allclose(nll, np.exp(-1.0) + 1.0 + np.exp(-2.0) + 2.0, rtol=1e-15)

    def test_gumbel_ignores_shape_and_prior(self):
        base = accumulate_data_nll(0.0, self.y, self.index, self.a, self.log_b, 0.0, 0)
        other = accumulate_data_nll(
            0.0, self.y, self.index, self.a, self.log_b, 5.0, 0, s_mean=1.0, s_sd=0.1
        )
        assert base == other

    def test_accumulates_onto_existing_value(self):
        base = accumulate_data_nll(0.0, self.y, self.index, self.a, self.log_b, 0.0, 0)
        shifted = accumulate_data_nll(10.0, self.y, self.index, self.a, self.log_b, 0.0, 0)
        np.testing.assert_allclose(shifted, base + 10.0)

    def test_positive_shape_with_prior(self):
        stored = np.log(0.2)
        nll = accumulate_data_nll(
            0.0, self.y, self.index, self.a, self.log_b, stored,
            ShapeReparam.POSITIVE, s_mean=-1.0, s_sd=1.0,
        )
        a_obs = self.a[self.index]
        b_obs = np.exp(self.log_b[self.index])
        expected = -stats.norm.logpdf(stored, -1.0, 1.0) - np.sum(
            stats.genextreme.logpdf(self.y, -0.2, loc=a_obs, scale=b_obs)
        )
        np.testing.assert_allclose(nll, expected, rtol=1e-12)

    def test_negative_shape_flat_prior(self):
        stored = np.log(0.1)
        nll = accumulate_data_nll(
            0.0, self.y, self.index, self.a, self.log_b, stored, "negative"
        )
        expected = -np.sum(stats.genextreme.logpdf(
            self.y, 0.1, loc=self.a[self.index], scale=np.exp(self.log_b[self.index])
        ))
        np.testing.assert_allclose(nll, expected, rtol=1e-12)

    def test_scalar_and_constant_vector_agree(self):
        scalar = accumulate_data_nll(0.0, self.y, self.index, self.a, 0.3, 0.1, 3)
        vector = accumulate_data_nll(0.0, self.y, self.index, self.a, np.full(2, 0.3), 0.1, 3)
        np.testing.assert_allclose(scalar, vector, rtol=1e-15)

    def test_per_location_shape(self):
        s = np.array([0.1, -0.2])
        nll = accumulate_data_nll(
            0.0, self.y, self.index, self.a, self.log_b, s, 3, s_sd=1.0, shape_prior=False
        )
        expected = -np.sum(stats.genextreme.logpdf(
            self.y, -s[self.index], loc=self.a[self.index],
            scale=np.exp(self.log_b[self.index])
        ))
        np.testing.assert_allclose(nll, expected, rtol=1e-12)

    def test_shape_prior_can_be_disabled(self):
        with_prior = accumulate_data_nll(
            0.0, self.y, self.index, self.a, self.log_b, 0.1, 3, s_mean=0.0, s_sd=0.5
        )
        without = accumulate_data_nll(
            0.0, self.y, self.index, self.a, self.log_b, 0.1, 3, s_mean=0.0, s_sd=0.5,
            shape_prior=False,
        )
        np.testing.assert_allclose(with_prior - without, -stats.norm.logpdf(0.1, 0.0, 0.5))

    def test_support_violation_propagates(self):
        with np.errstate(invalid="ignore"):
            nll = accumulate_data_nll(
                0.0, self.y, self.index, np.array([10.0, 10.0]), 0.0, 0.5, 3
            )
        assert not np.isfinite(nll)

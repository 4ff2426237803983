"""
Unit tests for spatial_gev.latent module.

Tests the multivariate-normal and GMRF penalties, detrending and the
regression-coefficient prior.
"""

import numpy as np
import pytest
from scipy import linalg, sparse, stats

from spatial_gev.exceptions import NotPositiveDefiniteWarning
from spatial_gev.kernels import build_exponential
from spatial_gev.latent import (
    BETA_PRIOR_SD,
    coefficient_prior_nll,
    detrend,
    gmrf_penalty,
    mvn_penalty,
)


class TestMVNPenalty:
    """Test the dense Gaussian-process penalty."""

    def setup_method(self):
        coords = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 2.0], [1.5, 1.5]])
        self.dd = np.sqrt(((coords[:, None, :] - coords[None, :, :]) ** 2).sum(-1))
        self.cov = build_exponential(self.dd, 1.3, 0.9)
        self.x = np.array([0.4, -0.2, 1.1, 0.3])

    def test_matches_scipy(self):
        np.testing.assert_allclose(
            mvn_penalty(self.cov, self.x),
            -stats.multivariate_normal.logpdf(self.x, mean=np.zeros(4), cov=self.cov),
            rtol=1e-12,
        )

    def test_additive_over_independent_fields(self):
        y = np.array([-0.5, 0.8, 0.1, 0.0])
        cov_y = build_exponential(self.dd, 0.4, 2.0)
        joint = mvn_penalty(linalg.block_diag(self.cov, cov_y), np.concatenate([self.x, y]))
        np.testing.assert_allclose(
            joint, mvn_penalty(self.cov, self.x) + mvn_penalty(cov_y, y), rtol=1e-12
        )

    def test_coincident_locations_detected(self):
        """Zero distance collapses the covariance to a singular matrix."""
        dd = np.zeros((2, 2))
        cov = build_exponential(dd, 1.0, 1.0)
        np.testing.assert_array_equal(cov, np.ones((2, 2)))
        with pytest.warns(NotPositiveDefiniteWarning):
            value = mvn_penalty(cov, np.array([0.1, 0.2]))
        assert np.isnan(value)

    def test_non_finite_covariance_propagates(self):
        cov = self.cov.copy()
        cov[0, 0] = np.nan
        assert np.isnan(mvn_penalty(cov, self.x))


class TestGMRFPenalty:
    """Test the sparse-precision penalty."""

    def setup_method(self):
        # Tridiagonal precision of a first-order random walk plus a ridge
        n = 5
        self.Q = sparse.diags(
            [-np.ones(n - 1), 2.5 * np.ones(n), -np.ones(n - 1)], [-1, 0, 1], format="csr"
        )
        self.x = np.array([0.3, -0.1, 0.7, 0.2, -0.4])

    def test_matches_dense_density(self):
        scale = 1.7
        cov = scale ** 2 * np.linalg.inv(self.Q.toarray())
        np.testing.assert_allclose(
            gmrf_penalty(self.Q, scale, self.x),
            -stats.multivariate_normal.logpdf(self.x, mean=np.zeros(5), cov=cov),
            rtol=1e-10,
        )

    def test_unit_scale_is_plain_gmrf(self):
        Q = self.Q.toarray()
        _, log_det = np.linalg.slogdet(Q)
        expected = -0.5 * log_det + 0.5 * self.x @ Q @ self.x + 2.5 * np.log(2 * np.pi)
        np.testing.assert_allclose(gmrf_penalty(self.Q, 1.0, self.x), expected, rtol=1e-12)

    def test_indefinite_precision_detected(self):
        Q = sparse.csr_matrix(np.array([[1.0, 2.0], [2.0, 1.0]]))
        with pytest.warns(NotPositiveDefiniteWarning):
            value = gmrf_penalty(Q, 1.0, np.array([0.1, 0.2]))
        assert np.isnan(value)


class TestMeanTrend:
    """Test detrending and the coefficient prior."""

    def test_detrend(self):
        X = np.array([[1.0, 0.5], [1.0, -1.0], [1.0, 2.0]])
        beta = np.array([0.2, 0.4])
        field = np.array([1.0, 2.0, 3.0])
        np.testing.assert_allclose(detrend(field, X, beta), field - X @ beta)

    def test_detrend_without_design(self):
        field = np.array([1.0, 2.0])
        np.testing.assert_array_equal(detrend(field), field)

    def test_coefficient_prior(self):
        beta = np.array([1.0, -3.0, 20.0])
        np.testing.assert_allclose(
            coefficient_prior_nll(beta, True),
            -np.sum(stats.norm.logpdf(beta, 0.0, BETA_PRIOR_SD)),
        )

    def test_flat_coefficient_prior(self):
        assert coefficient_prior_nll(np.array([1.0, 2.0]), False) == 0.0

"""
Latent-field densities.

Negative log-densities of Gaussian fields, either through a dense
covariance (Gaussian-process kernels) or a sparse precision (SPDE GMRF).
Penalties of independent fields add up.  A matrix that fails to factorize
gives a non-finite penalty rather than an exception.
"""

import numpy as np

from spatial_gev.backends import BackendLike, resolve_backend

LOG_2PI = np.log(2.0 * np.pi)

# Standard deviation of the weakly-informative prior on regression coefficients.
BETA_PRIOR_SD = 100.0


def mvn_penalty(cov, field, backend: BackendLike = None):
    """
    Negative log-density of a zero-mean multivariate normal.

    0.5 * log det(cov) + 0.5 * x' cov^(-1) x + n/2 * log(2 pi)

    :param cov: Covariance matrix (n, n)
    :param field: Field values, already detrended (n,)
    :param backend: Array backend
    :return: Scalar penalty; NaN if cov is not positive definite
    """
    be = resolve_backend(backend)
    x = be.asarray(field)
    quad, log_det = be.mvn_terms(be.asarray(cov), x)
    return 0.5 * log_det + 0.5 * quad + 0.5 * x.shape[0] * LOG_2PI


def gmrf_penalty(Q, scale, field, backend: BackendLike = None):
    """
    Negative log-density of a scaled zero-mean GMRF.

    The field is ``scale * z`` where z has precision Q:

    -0.5 * log det(Q) + 0.5 * z' Q z + n/2 * log(2 pi) + n * log(scale)

    :param Q: Precision matrix (sparse for NumPy, dense for JAX)
    :param scale: Standard-deviation multiplier
    :param field: Field values, already detrended (n,)
    :param backend: Array backend
    :return: Scalar penalty; NaN if Q is not positive definite
    """
    be = resolve_backend(backend)
    x = be.asarray(field)
    n = x.shape[0]
    quad, log_det = be.gmrf_terms(Q, x / scale)
    return -0.5 * log_det + 0.5 * quad + 0.5 * n * LOG_2PI + n * be.xp.log(scale)


def detrend(field, design=None, beta=None, backend: BackendLike = None):
    """Subtract the regression mean ``design @ beta`` from *field*."""
    be = resolve_backend(backend)
    field = be.asarray(field)
    if design is None:
        return field
    return field - be.asarray(design) @ be.asarray(beta)


def coefficient_prior_nll(beta, enabled: bool, backend: BackendLike = None):
    """
    Negative log of the N(0, 100^2) prior on regression coefficients.

    Returns 0 (flat prior) unless *enabled*.
    """
    if not enabled or beta is None:
        return 0.0
    be = resolve_backend(backend)
    return -be.xp.sum(be.norm_logpdf(be.asarray(beta), 0.0, BETA_PRIOR_SD))

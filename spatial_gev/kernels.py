"""
Spatial covariance kernels.

This module turns a pairwise distance matrix and kernel hyperparameters
into a dense covariance matrix for a Gaussian-process field:

- exponential:  sigma * exp(-d / ell)
- Matern:       (d/phi)^kappa K_kappa(d/phi) / (Gamma(kappa) 2^(kappa-1))

Both builders support hard sparsification: pairs at distance
``>= threshold`` get covariance exactly 0.  The two builders read
``threshold = 0`` differently.  For the exponential kernel 0 means "no
sparsification"; for the Matern kernel it is a literal cutoff, so 0
leaves only the diagonal and ``math.inf`` keeps every pair.

Thresholded kernels are not guaranteed positive definite.
"""

import numpy as np

from spatial_gev.backends import BackendLike, resolve_backend


def _check_threshold(threshold: float) -> None:
    if np.ndim(threshold) != 0 or not threshold >= 0:
        raise ValueError(f"threshold must be a non-negative scalar, got {threshold!r}")


def _mirror_lower(xp, values, diagonal):
    """Symmetric matrix from the strict lower triangle of *values*."""
    lower = xp.tril(values, k=-1)
    return lower + lower.T + diagonal * xp.eye(values.shape[0])


def build_exponential(
    dd,
    sigma,
    ell,
    threshold: float = 0.0,
    backend: BackendLike = None,
):
    """
    Compute the covariance matrix of the exponential kernel.

    Parameters
    ----------
    dd : array_like
        Symmetric distance matrix of shape (n, n) with zero diagonal
    sigma : float or array scalar
        Amplitude (marginal variance); the diagonal of the result
    ell : float or array scalar
        Length scale
    threshold : float
        0 computes every pair with a single elementwise exponential.
        A positive value sets pairs with ``dd >= threshold`` to exactly 0;
        only the lower triangle is evaluated and then mirrored.
    backend : str or ArrayBackend, optional
        Array backend; see :func:`spatial_gev.backends.resolve_backend`

    Returns
    -------
    array
        Covariance matrix of shape (n, n)
    """
    _check_threshold(threshold)
    be = resolve_backend(backend)
    xp = be.xp
    dd = be.asarray(dd)

    if threshold == 0:
        return sigma * xp.exp(-dd / ell)

    values = xp.where(dd >= threshold, 0.0, sigma * xp.exp(-dd / ell))
    return _mirror_lower(xp, values, sigma)


def matern_correlation(d, phi, kappa, backend: BackendLike = None):
    """
    Evaluate the unit-variance Matern correlation function.

    Parameters
    ----------
    d : array_like
        Non-negative distances (any shape)
    phi : float or array scalar
        Range parameter
    kappa : float or array scalar
        Smoothness parameter; kappa = 1/2 gives the exponential kernel
    backend : str or ArrayBackend, optional
        Array backend

    Returns
    -------
    array
        Correlations, equal to 1 where ``d == 0``
    """
    be = resolve_backend(backend)
    xp = be.xp
    d = be.asarray(d)

    # Evaluate at a harmless distance where d == 0 so neither the value
    # nor its gradient picks up K_kappa(0) = inf.
    positive = d > 0
    x = xp.where(positive, d, 1.0) / phi
    log_scale = kappa * xp.log(x) - be.gammaln(kappa) - (kappa - 1.0) * np.log(2.0)
    value = xp.exp(log_scale) * be.bessel_kv(kappa, x)
    return xp.where(positive, value, 1.0)


def build_matern(
    dd,
    phi,
    kappa,
    threshold: float,
    backend: BackendLike = None,
):
    """
    Compute the covariance matrix of the Matern kernel.

    Parameters
    ----------
    dd : array_like
        Symmetric distance matrix of shape (n, n) with zero diagonal
    phi : float or array scalar
        Range parameter
    kappa : float or array scalar
        Smoothness parameter
    threshold : float
        Literal distance cutoff: off-diagonal pairs with
        ``dd >= threshold`` are exactly 0.  Pass ``math.inf`` for a
        dense matrix.
    backend : str or ArrayBackend, optional
        Array backend

    Returns
    -------
    array
        Covariance matrix of shape (n, n) with unit diagonal
    """
    _check_threshold(threshold)
    be = resolve_backend(backend)
    xp = be.xp
    dd = be.asarray(dd)

    values = xp.where(dd >= threshold, 0.0, matern_correlation(dd, phi, kappa, backend=be))
    # matern(0) == 1
    return _mirror_lower(xp, values, 1.0)


_KERNELS = ("exponential", "matern")


def apply_threshold(
    cov,
    dd,
    threshold: float,
    kernel: str = "exponential",
    backend: BackendLike = None,
):
    """
    Zero the off-diagonal entries of *cov* whose distance is ``>= threshold``.

    Uses the cutoff rule of the named builder, so re-applying it to that
    builder's output is a no-op.

    Parameters
    ----------
    cov : array_like
        Covariance matrix of shape (n, n)
    dd : array_like
        Distance matrix of shape (n, n)
    threshold : float
        Distance cutoff
    kernel : str
        "exponential" (0 leaves *cov* unchanged) or "matern" (0 leaves
        only the diagonal)
    backend : str or ArrayBackend, optional
        Array backend

    Returns
    -------
    array
        Thresholded covariance matrix
    """
    _check_threshold(threshold)
    if kernel not in _KERNELS:
        raise ValueError(f"Unknown kernel '{kernel}'. Choose from: {list(_KERNELS)}")
    be = resolve_backend(backend)
    xp = be.xp
    cov = be.asarray(cov)
    if kernel == "exponential" and threshold == 0:
        return cov
    dd = be.asarray(dd)
    off_diagonal = ~xp.eye(cov.shape[0], dtype=bool)
    return xp.where(off_diagonal & (dd >= threshold), 0.0, cov)

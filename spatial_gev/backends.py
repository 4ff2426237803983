"""
Array backends for likelihood evaluation.

Every numerical routine in the package takes an optional ``backend``
argument and does its arithmetic through ``backend.xp`` (the array
namespace) plus the handful of operations below that differ between
libraries.  The host picks the numeric type once, per call:

- :class:`NumpyBackend` evaluates with NumPy/SciPy.  Sparse SPDE
  precisions stay sparse and are factorized with SuperLU.
- :class:`JaxBackend` evaluates with ``jax.numpy`` so the whole negative
  log-likelihood can be traced by ``jax.grad``/``jax.jit``.  Sparse
  operators are densified because JAX has no differentiable sparse
  Cholesky.

:func:`resolve_backend` turns None, a name, or a backend instance into a
concrete backend, following the policy in :mod:`._config`.  An explicit
request for ``"jax"`` when JAX is missing raises
:class:`~spatial_gev.exceptions.BackendError`.
"""

from __future__ import annotations

import contextlib
import logging
import warnings
from typing import Any, Callable, Protocol, Tuple, Union, runtime_checkable

import numpy as np
from scipy import linalg, sparse, special, stats
from scipy.sparse.linalg import splu

from ._config import get_backend
from .exceptions import BackendError, NotPositiveDefiniteWarning

logger = logging.getLogger(__name__)

# Trapezoid nodes for the JAX modified Bessel function of the second kind.
_KV_NODES = 512


@runtime_checkable
class ArrayBackend(Protocol):
    """
    Interface that every compute backend must implement.

    Attributes
    ----------
    name : str
        Short identifier ("numpy" or "jax")
    xp : module
        Array namespace with the NumPy API (``numpy`` or ``jax.numpy``)
    """

    name: str
    xp: Any

    def asarray(self, x: Any) -> Any: ...

    def gammaln(self, x: Any) -> Any: ...

    def bessel_kv(self, nu: Any, x: Any) -> Any: ...

    def norm_logpdf(self, x: Any, loc: Any, scale: Any) -> Any: ...

    def mvn_terms(self, cov: Any, x: Any) -> Tuple[Any, Any]:
        """Return ``(x' cov^{-1} x, log det cov)`` via a Cholesky factor."""
        ...

    def gmrf_terms(self, Q: Any, x: Any) -> Tuple[Any, Any]:
        """Return ``(x' Q x, log det Q)`` for a precision matrix."""
        ...

    def operator_matrices(self, operator: Any) -> Tuple[Any, Any, Any]: ...

    def errstate(self) -> contextlib.AbstractContextManager: ...

    def value_and_grad(self, fn: Callable) -> Callable: ...


class NumpyBackend:
    """NumPy/SciPy evaluation.  Not differentiable."""

    name = "numpy"

    def __init__(self) -> None:
        self.xp = np

    def asarray(self, x):
        return np.asarray(x, dtype=float)

    def gammaln(self, x):
        return special.gammaln(x)

    def bessel_kv(self, nu, x):
        return special.kv(nu, x)

    def norm_logpdf(self, x, loc, scale):
        return stats.norm.logpdf(x, loc, scale)

    def mvn_terms(self, cov, x):
        cov = np.asarray(cov, dtype=float)
        if not np.all(np.isfinite(cov)):
            return np.nan, np.nan
        try:
            factor = linalg.cho_factor(cov, lower=True, check_finite=False)
        except linalg.LinAlgError:
            warnings.warn(
                "Covariance matrix is not positive definite; "
                "returning NaN for the latent-field penalty",
                NotPositiveDefiniteWarning,
                stacklevel=3,
            )
            return np.nan, np.nan
        quad = x @ linalg.cho_solve(factor, x, check_finite=False)
        log_det = 2.0 * np.sum(np.log(np.diag(factor[0])))
        return quad, log_det

    def gmrf_terms(self, Q, x):
        Q = sparse.csc_matrix(Q)
        quad = x @ (Q @ x)
        if not np.all(np.isfinite(Q.data)):
            return quad, np.nan

        # Symmetric mode keeps the pivots on the diagonal, so an SPD
        # matrix factorizes with a strictly positive diag(U).
        try:
            lu = splu(
                Q,
                permc_spec="MMD_AT_PLUS_A",
                diag_pivot_thresh=0.0,
                options={"SymmetricMode": True},
            )
        except RuntimeError as e:
            if "singular" not in str(e):
                raise
            diag_u = np.zeros(1)
        else:
            diag_u = lu.U.diagonal()

        if np.any(diag_u <= 0):
            warnings.warn(
                "Precision matrix is not positive definite; "
                "returning NaN for the GMRF penalty",
                NotPositiveDefiniteWarning,
                stacklevel=3,
            )
            return quad, np.nan
        return quad, np.sum(np.log(diag_u))

    def operator_matrices(self, operator):
        return operator.M0, operator.M1, operator.M2

    def errstate(self):
        # Out-of-support GEV evaluations produce NaN/inf on purpose.
        return np.errstate(invalid="ignore", divide="ignore", over="ignore")

    def value_and_grad(self, fn):
        raise BackendError(
            "The numpy backend does not provide automatic differentiation; "
            "use backend='jax'"
        )


class JaxBackend:
    """
    ``jax.numpy`` evaluation, traceable by ``jax.grad`` and ``jax.jit``.

    Parameters
    ----------
    enable_x64 : bool
        Switch JAX to double precision.  Likelihoods of extreme-value
        data lose most of their digits in float32.
    """

    name = "jax"

    def __init__(self, enable_x64: bool = True) -> None:
        try:
            import jax
            import jax.numpy as jnp
            import jax.scipy as jsp
        except ImportError as exc:
            raise BackendError(
                "The 'jax' backend was requested but JAX is not installed. "
                "Install it with: pip install 'spatial_gev[jax]'"
            ) from exc

        if enable_x64:
            jax.config.update("jax_enable_x64", True)
        self._jax = jax
        self._jsp = jsp
        self.xp = jnp

    def asarray(self, x):
        return self.xp.asarray(x, dtype=float)

    def gammaln(self, x):
        return self._jsp.special.gammaln(x)

    def bessel_kv(self, nu, x):
        """
        Modified Bessel function of the second kind, ``K_nu(x)``.

        Uses ``K_nu(x) = int_0^inf exp(-x cosh t) cosh(nu t) dt``.  The
        integrand is even in ``t``, so the trapezoid rule converges
        geometrically; the upper limit adapts to ``x`` and ``nu``.
        Requires ``x > 0``.
        """
        jnp = self.xp
        x = jnp.asarray(x)
        nu = jnp.abs(jnp.asarray(nu))
        upper = jnp.maximum(jnp.log(200.0 * (1.0 + nu) / x), 3.0)
        nodes = jnp.linspace(0.0, 1.0, _KV_NODES)
        t = upper[..., None] * nodes
        z = nu[..., None] * t
        log_cosh = z + jnp.log1p(jnp.exp(-2.0 * z)) - jnp.log(2.0)
        f = jnp.exp(-x[..., None] * jnp.cosh(t) + log_cosh)
        h = upper / (_KV_NODES - 1)
        return h * (jnp.sum(f, axis=-1) - 0.5 * (f[..., 0] + f[..., -1]))

    def norm_logpdf(self, x, loc, scale):
        return self._jsp.stats.norm.logpdf(x, loc, scale)

    def mvn_terms(self, cov, x):
        jnp = self.xp
        # A failed factorization leaves NaN in L, which propagates.
        L = jnp.linalg.cholesky(cov)
        z = self._jsp.linalg.solve_triangular(L, x, lower=True)
        return z @ z, 2.0 * jnp.sum(jnp.log(jnp.diag(L)))

    def gmrf_terms(self, Q, x):
        jnp = self.xp
        L = jnp.linalg.cholesky(Q)
        return x @ (Q @ x), 2.0 * jnp.sum(jnp.log(jnp.diag(L)))

    def operator_matrices(self, operator):
        return tuple(
            self.xp.asarray(m.toarray()) for m in (operator.M0, operator.M1, operator.M2)
        )

    def errstate(self):
        return contextlib.nullcontext()

    def value_and_grad(self, fn):
        return self._jax.jit(self._jax.value_and_grad(fn))


BackendLike = Union[None, str, ArrayBackend]

_INSTANCES: dict = {}


def resolve_backend(backend: BackendLike = None) -> ArrayBackend:
    """
    Return a concrete backend for *backend*.

    :param backend: None (use the configured default), a backend name
        (``"numpy"`` or ``"jax"``), or an object implementing
        :class:`ArrayBackend`
    :return: Backend instance
    :raises BackendError: If the name is unknown or JAX is not installed
    """
    if backend is not None and not isinstance(backend, str):
        if not isinstance(backend, ArrayBackend):
            raise BackendError(
                f"{type(backend).__name__} does not implement the ArrayBackend interface"
            )
        return backend

    name = get_backend() if backend is None else backend.strip().lower()
    if name not in _INSTANCES:
        if name == "numpy":
            _INSTANCES[name] = NumpyBackend()
        elif name == "jax":
            _INSTANCES[name] = JaxBackend()
        else:
            raise BackendError(f"Unknown backend '{backend}'. Choose 'numpy' or 'jax'")
        logger.debug("Initialized %s backend", name)
    return _INSTANCES[name]

"""
Data layer of the spatial GEV models.

Observed block maxima are GEV(a, b, s) draws, or Gumbel(a, b) draws when
the shape is fixed at zero.  The shape parameter is stored in one of four
ways, selected by :class:`ShapeReparam`, and the stored value may carry a
normal prior.

Outside the GEV support (1 + s (x - a) / b <= 0) the log-density is NaN or
-inf.  Nothing here clamps or rejects such values: they flow into the total
negative log-likelihood where the optimizer sees them.
"""

from enum import IntEnum
from typing import Optional, Union

import numpy as np

from spatial_gev.backends import BackendLike, resolve_backend
from spatial_gev.exceptions import DataError

# s_sd at or above this value means an improper flat prior on s.
FLAT_PRIOR_SD = 9999.0


class ShapeReparam(IntEnum):
    """How the GEV shape parameter is stored.

    ZERO           shape fixed at 0 (Gumbel likelihood, no shape prior)
    POSITIVE       s > 0, the model stores log(s)
    NEGATIVE       s < 0, the model stores log(-s)
    UNCONSTRAINED  the model stores s
    """
    ZERO = 0
    POSITIVE = 1
    NEGATIVE = 2
    UNCONSTRAINED = 3

    @classmethod
    def coerce(cls, value: Union[int, str, "ShapeReparam"]) -> "ShapeReparam":
        """Accept a flag (0-3), a member, or a name such as ``"positive"``."""
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise DataError(
                    f"Unknown shape reparametrization {value!r}. "
                    f"Choose from: {[m.name.lower() for m in cls]}"
                ) from None
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise DataError(
                f"reparam_s must be one of 0, 1, 2, 3, got {value!r}"
            ) from None


def gumbel_logpdf(x, a, log_b, backend: BackendLike = None):
    """
    Log-density of the Gumbel distribution.

    :param x: Argument to the density
    :param a: Location parameter
    :param log_b: Log of scale parameter
    :param backend: Array backend
    :return: -exp(-t) - t - log_b with t = (x - a) / exp(log_b)
    """
    xp = resolve_backend(backend).xp
    t = (x - a) / xp.exp(log_b)
    return -xp.exp(-t) - t - log_b


def gev_logpdf(x, a, log_b, s, backend: BackendLike = None):
    """
    Log-density of the GEV distribution.

    :param x: Argument to the density
    :param a: Location parameter
    :param log_b: Log of scale parameter
    :param s: Shape parameter (natural scale, non-zero)
    :param backend: Array backend
    :return: Log-density; non-finite outside the support
    """
    xp = resolve_backend(backend).xp
    log_t = xp.log(1.0 + s * (x - a) / xp.exp(log_b))
    return -xp.exp(-log_t / s) - (s + 1.0) / s * log_t - log_b


def transform_shape(s, reparam_s, backend: BackendLike = None):
    """
    Map the stored shape value to the natural-scale GEV shape.

    ``exp(s)`` for POSITIVE, ``-exp(s)`` for NEGATIVE, ``s`` otherwise.
    """
    xp = resolve_backend(backend).xp
    reparam = ShapeReparam.coerce(reparam_s)
    if reparam is ShapeReparam.POSITIVE:
        return xp.exp(s)
    if reparam is ShapeReparam.NEGATIVE:
        return -xp.exp(s)
    return s


def shape_prior_nll(s, s_mean, s_sd, backend: BackendLike = None):
    """
    Negative log of the normal prior on the stored shape value.

    Exactly 0 when ``s_sd >= FLAT_PRIOR_SD``.
    """
    if s_sd >= FLAT_PRIOR_SD:
        return 0.0
    be = resolve_backend(backend)
    return -be.xp.sum(be.norm_logpdf(s, s_mean, s_sd))


def observation_index(n_obs, meshidxloc: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Field index of every observation.

    Observations of location i occupy a contiguous block of length
    ``n_obs[i]`` in the response vector.

    :param n_obs: Number of observations per location
    :param meshidxloc: Mesh node of every location (SPDE models)
    :return: Integer array of length sum(n_obs)
    """
    n_obs = np.asarray(n_obs)
    index = np.repeat(np.arange(len(n_obs)), n_obs)
    if meshidxloc is not None:
        index = np.asarray(meshidxloc)[index]
    return index


def _per_observation(xp, param, index):
    param = xp.asarray(param)
    return param if param.ndim == 0 else param[index]


def accumulate_data_nll(
    nll,
    y,
    index: np.ndarray,
    a,
    log_b,
    s,
    reparam_s,
    s_mean: float = 0.0,
    s_sd: float = FLAT_PRIOR_SD,
    shape_prior: bool = True,
    backend: BackendLike = None,
):
    """
    Add the data-layer negative log-likelihood to *nll*.

    Each of ``a``, ``log_b`` and ``s`` is either a scalar shared by every
    location or a field that is read at ``index``.

    Parameters
    ----------
    nll : float or array scalar
        Running negative log-likelihood
    y : array_like
        Observations, grouped by location
    index : np.ndarray
        Field index of every observation, see :func:`observation_index`
    a, log_b : scalar or array
        GEV location and log-scale
    s : scalar or array
        Stored (possibly transformed) GEV shape
    reparam_s : int, str or ShapeReparam
        Shape storage policy
    s_mean, s_sd : float
        Normal prior on the stored shape; ``s_sd >= 9999`` is flat
    shape_prior : bool
        Whether to add the shape prior at all
    backend : str or ArrayBackend, optional
        Array backend

    Returns
    -------
    Updated negative log-likelihood
    """
    be = resolve_backend(backend)
    xp = be.xp
    reparam = ShapeReparam.coerce(reparam_s)
    y = be.asarray(y)
    a_obs = _per_observation(xp, a, index)
    log_b_obs = _per_observation(xp, log_b, index)

    if reparam is ShapeReparam.ZERO:
        return nll - xp.sum(gumbel_logpdf(y, a_obs, log_b_obs, backend=be))

    if shape_prior:
        nll = nll + shape_prior_nll(s, s_mean, s_sd, backend=be)
    shape = _per_observation(xp, transform_shape(s, reparam, backend=be), index)
    return nll - xp.sum(gev_logpdf(y, a_obs, log_b_obs, shape, backend=be))

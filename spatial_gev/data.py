"""
Typed inputs of the spatial GEV models.

Data (observations, distances, mesh operator, design matrices) live in
frozen dataclasses that are validated once, at construction, so that a
malformed layout fails loudly instead of being silently misindexed.

Parameters are NamedTuples, one per model variant.  NamedTuples are JAX
pytrees, so ``jax.grad`` differentiates with respect to every field.
Whether a field is a scalar or a vector is fixed by the variant:

=========  =======  =======  =======
variant    a        log_b    s
=========  =======  =======  =======
a_exp      vector   scalar   scalar
ab_*       vector   vector   scalar
abs_exp    vector   vector   vector
=========  =======  =======  =======
"""

import logging
from dataclasses import dataclass
from typing import Any, NamedTuple, Optional, Union

import numpy as np

from spatial_gev.exceptions import DataError
from spatial_gev.gev import FLAT_PRIOR_SD, ShapeReparam, observation_index
from spatial_gev.locations import validate_distance_matrix
from spatial_gev.spde import SPDEOperator

logger = logging.getLogger(__name__)

Array = Any


def _design(name: str, design, n_rows: int) -> Optional[np.ndarray]:
    if design is None:
        return None
    design = np.asarray(design, dtype=float)
    if design.ndim != 2 or design.shape[0] != n_rows:
        raise DataError(
            f"{name} must have shape ({n_rows}, r), got {design.shape}"
        )
    if not np.all(np.isfinite(design)):
        raise DataError(f"{name} contains NaN or infinite values")
    return design


@dataclass(frozen=True, eq=False)
class Observations:
    """
    Block maxima grouped by location.

    Attributes
    ----------
    y : np.ndarray
        Observations; those of location i form the i-th contiguous block
    n_obs : np.ndarray
        Number of observations per location, sum(n_obs) == len(y)
    reparam_s : ShapeReparam
        Shape storage policy (accepts 0-3 or a name)
    s_mean, s_sd : float
        Normal prior on the stored shape; s_sd >= 9999 means flat
    """
    y: np.ndarray
    n_obs: np.ndarray
    reparam_s: Union[int, str, ShapeReparam] = ShapeReparam.ZERO
    s_mean: float = 0.0
    s_sd: float = FLAT_PRIOR_SD

    def __post_init__(self):
        y = np.asarray(self.y, dtype=float)
        if y.ndim != 1:
            raise DataError(f"y must be one-dimensional, got shape {y.shape}")

        n_obs = np.asarray(self.n_obs)
        if n_obs.ndim != 1 or len(n_obs) == 0:
            raise DataError(f"n_obs must be a non-empty vector, got shape {n_obs.shape}")
        if not np.issubdtype(n_obs.dtype, np.integer):
            if not np.all(np.isfinite(n_obs)) or np.any(n_obs != np.round(n_obs)):
                raise DataError("n_obs must contain whole numbers")
            n_obs = n_obs.astype(int)
        if np.any(n_obs < 0):
            raise DataError("n_obs must be non-negative")
        if n_obs.sum() != len(y):
            raise DataError(
                f"sum(n_obs) = {n_obs.sum()} does not match len(y) = {len(y)}"
            )

        if not self.s_sd > 0:
            raise DataError(f"s_sd must be positive, got {self.s_sd}")

        object.__setattr__(self, 'y', y)
        object.__setattr__(self, 'n_obs', n_obs)
        object.__setattr__(self, 'reparam_s', ShapeReparam.coerce(self.reparam_s))
        object.__setattr__(self, 's_mean', float(self.s_mean))
        object.__setattr__(self, 's_sd', float(self.s_sd))

    @property
    def n_locations(self) -> int:
        return len(self.n_obs)


@dataclass(frozen=True, eq=False)
class KernelInputs:
    """
    Data for the Gaussian-process kernel models (exponential, Matern).

    Attributes
    ----------
    observations : Observations
    dd : np.ndarray
        Distance matrix between locations, shape (n, n)
    threshold : float
        Sparsification cutoff; see :mod:`spatial_gev.kernels` for how the
        exponential and Matern kernels read it
    design_mat_a, design_mat_b, design_mat_s : np.ndarray, optional
        Design matrices of shape (n, r) for the mean of a, log_b, s
    beta_prior : bool
        Put a N(0, 100^2) prior on the regression coefficients
    """
    observations: Observations
    dd: np.ndarray
    threshold: float = 0.0
    design_mat_a: Optional[np.ndarray] = None
    design_mat_b: Optional[np.ndarray] = None
    design_mat_s: Optional[np.ndarray] = None
    beta_prior: bool = False

    def __post_init__(self):
        if not isinstance(self.observations, Observations):
            raise DataError("observations must be an Observations instance")
        n = self.observations.n_locations
        dd = validate_distance_matrix(self.dd)
        if dd.shape[0] != n:
            raise DataError(
                f"Distance matrix is {dd.shape[0]}x{dd.shape[0]} but there are {n} locations"
            )
        if np.ndim(self.threshold) != 0 or not self.threshold >= 0:
            raise DataError(f"threshold must be a non-negative scalar, got {self.threshold!r}")

        object.__setattr__(self, 'dd', dd)
        object.__setattr__(self, 'threshold', float(self.threshold))
        for name in ('design_mat_a', 'design_mat_b', 'design_mat_s'):
            object.__setattr__(self, name, _design(name, getattr(self, name), n))
        logger.debug("Kernel inputs: %d locations, %d observations", n, len(self.observations.y))

    @property
    def n_field(self) -> int:
        """Length of every latent field vector."""
        return self.observations.n_locations

    def design_matrix(self, field: str) -> Optional[np.ndarray]:
        return {'a': self.design_mat_a, 'log_b': self.design_mat_b,
                's': self.design_mat_s}[field]

    def observation_index(self) -> np.ndarray:
        return observation_index(self.observations.n_obs)


@dataclass(frozen=True, eq=False)
class SpdeInputs:
    """
    Data for the SPDE models.

    Latent fields live on the mesh nodes; location i reads node
    ``meshidxloc[i]``.

    Attributes
    ----------
    observations : Observations
    operator : SPDEOperator
        Finite-element matrices of the mesh
    meshidxloc : np.ndarray
        Mesh node of every location
    nu : float
        Fixed Matern smoothness used for the marginal variance
    design_mat_a, design_mat_b : np.ndarray, optional
        Design matrices of shape (n_mesh, r) for the mean of a and log_b
    beta_prior : bool
        Put a N(0, 100^2) prior on the regression coefficients
    """
    observations: Observations
    operator: SPDEOperator
    meshidxloc: np.ndarray
    nu: float = 1.0
    design_mat_a: Optional[np.ndarray] = None
    design_mat_b: Optional[np.ndarray] = None
    beta_prior: bool = False

    def __post_init__(self):
        if not isinstance(self.observations, Observations):
            raise DataError("observations must be an Observations instance")
        if isinstance(self.operator, dict):
            object.__setattr__(self, 'operator', SPDEOperator.from_mapping(self.operator))
        elif not isinstance(self.operator, SPDEOperator):
            raise DataError("operator must be an SPDEOperator")

        n = self.observations.n_locations
        n_mesh = self.operator.n_nodes
        meshidxloc = np.asarray(self.meshidxloc)
        if meshidxloc.shape != (n,):
            raise DataError(
                f"meshidxloc must have one entry per location ({n}), got shape {meshidxloc.shape}"
            )
        if not np.issubdtype(meshidxloc.dtype, np.integer):
            raise DataError("meshidxloc must contain integer node indices")
        if np.any((meshidxloc < 0) | (meshidxloc >= n_mesh)):
            raise DataError(f"meshidxloc has indices outside [0, {n_mesh})")
        if not self.nu > 0:
            raise DataError(f"nu must be positive, got {self.nu}")

        object.__setattr__(self, 'meshidxloc', meshidxloc)
        object.__setattr__(self, 'nu', float(self.nu))
        for name in ('design_mat_a', 'design_mat_b'):
            object.__setattr__(self, name, _design(name, getattr(self, name), n_mesh))
        logger.debug("SPDE inputs: %d locations on %d mesh nodes", n, n_mesh)

    @property
    def n_field(self) -> int:
        return self.operator.n_nodes

    def design_matrix(self, field: str) -> Optional[np.ndarray]:
        return {'a': self.design_mat_a, 'log_b': self.design_mat_b}.get(field)

    def observation_index(self) -> np.ndarray:
        return observation_index(self.observations.n_obs, self.meshidxloc)


class AExpParams(NamedTuple):
    """Spatial location a with an exponential kernel."""
    a: Array
    log_b: Array
    s: Array
    log_sigma_a: Array
    log_ell_a: Array
    beta_a: Optional[Array] = None


class AbExpParams(NamedTuple):
    """Spatial a and log_b with exponential kernels."""
    a: Array
    log_b: Array
    s: Array
    log_sigma_a: Array
    log_ell_a: Array
    log_sigma_b: Array
    log_ell_b: Array
    beta_a: Optional[Array] = None
    beta_b: Optional[Array] = None


class AbMaternParams(NamedTuple):
    """Spatial a and log_b with Matern kernels."""
    a: Array
    log_b: Array
    s: Array
    log_phi_a: Array
    log_kappa_a: Array
    log_phi_b: Array
    log_kappa_b: Array
    beta_a: Optional[Array] = None
    beta_b: Optional[Array] = None


class AbSpdeParams(NamedTuple):
    """Spatial a and log_b on an SPDE mesh."""
    a: Array
    log_b: Array
    s: Array
    log_sigma_a: Array
    log_kappa_a: Array
    log_sigma_b: Array
    log_kappa_b: Array
    beta_a: Optional[Array] = None
    beta_b: Optional[Array] = None


class AbsExpParams(NamedTuple):
    """Spatial a, log_b and s with exponential kernels and covariates."""
    a: Array
    log_b: Array
    s: Array
    beta_a: Array
    beta_b: Array
    beta_s: Array
    log_sigma_a: Array
    log_ell_a: Array
    log_sigma_b: Array
    log_ell_b: Array
    log_sigma_s: Array
    log_ell_s: Array

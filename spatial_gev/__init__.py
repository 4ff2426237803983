"""
SPATIAL_GEV: Likelihood engine for spatial extreme-value models
"""

__version__ = "0.1.0"

# Model assemblers
from .models import (
    ModelVariant,
    VariantSpec,
    VARIANTS,
    model_a_exp,
    model_ab_exp,
    model_ab_matern,
    model_ab_spde,
    model_abs_exp,
    negative_log_likelihood,
    make_objective,
    value_and_grad,
)

# Inputs
from .data import (
    Observations,
    KernelInputs,
    SpdeInputs,
    AExpParams,
    AbExpParams,
    AbMaternParams,
    AbSpdeParams,
    AbsExpParams,
)

# Building blocks (for advanced users)
from .kernels import build_exponential, build_matern, matern_correlation, apply_threshold
from .spde import SPDEOperator, build_spde_precision, marginal_variance, spde_operator_from_mesh
from .gev import (
    ShapeReparam,
    gumbel_logpdf,
    gev_logpdf,
    transform_shape,
    shape_prior_nll,
    observation_index,
    accumulate_data_nll,
)
from .latent import mvn_penalty, gmrf_penalty, detrend, coefficient_prior_nll
from .locations import distance_matrix, mesh_node_index

# Backends
from ._config import get_backend, set_backend
from .backends import NumpyBackend, JaxBackend, resolve_backend

# Exceptions
from .exceptions import (
    SpatialGevError,
    DataError,
    ParameterError,
    MatrixError,
    MeshError,
    BackendError,
    NotPositiveDefiniteWarning,
)

__all__ = [
    # Models
    'ModelVariant',
    'VariantSpec',
    'VARIANTS',
    'model_a_exp',
    'model_ab_exp',
    'model_ab_matern',
    'model_ab_spde',
    'model_abs_exp',
    'negative_log_likelihood',
    'make_objective',
    'value_and_grad',

    # Inputs
    'Observations',
    'KernelInputs',
    'SpdeInputs',
    'AExpParams',
    'AbExpParams',
    'AbMaternParams',
    'AbSpdeParams',
    'AbsExpParams',

    # Building blocks
    'build_exponential',
    'build_matern',
    'matern_correlation',
    'apply_threshold',
    'SPDEOperator',
    'build_spde_precision',
    'marginal_variance',
    'spde_operator_from_mesh',
    'ShapeReparam',
    'gumbel_logpdf',
    'gev_logpdf',
    'transform_shape',
    'shape_prior_nll',
    'observation_index',
    'accumulate_data_nll',
    'mvn_penalty',
    'gmrf_penalty',
    'detrend',
    'coefficient_prior_nll',
    'distance_matrix',
    'mesh_node_index',

    # Backends
    'get_backend',
    'set_backend',
    'NumpyBackend',
    'JaxBackend',
    'resolve_backend',

    # Exceptions
    'SpatialGevError',
    'DataError',
    'ParameterError',
    'MatrixError',
    'MeshError',
    'BackendError',
    'NotPositiveDefiniteWarning',
]

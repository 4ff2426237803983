"""
Negative log-likelihood of the spatial GEV models.

Model layer 1:  y ~ GEV(a, b, s)  (Gumbel when the shape is fixed at 0)
Model layer 2:  each spatial parameter minus its regression mean is a
                zero-mean Gaussian field

Five variants are supported.  Each is a :class:`VariantSpec` naming which
parameters are fields, which kernel family models them and whether
covariates are allowed; one assembler turns any VariantSpec into a likelihood:

1. exponentiate the log hyperparameters,
2. build a covariance (kernels) or precision (SPDE) per field,
3. add the latent-field penalty of each detrended field,
4. add the regression-coefficient priors,
5. add the data layer.

Examples
--------
>>> obs = Observations(y, n_obs, reparam_s="positive")
>>> inputs = KernelInputs(obs, dd)
>>> params = AExpParams(a=a0, log_b=0.0, s=-2.0, log_sigma_a=0.0, log_ell_a=1.0)
>>> nll = model_a_exp(inputs, params)

With JAX, the same call is differentiable:

>>> nll, grad = value_and_grad("a_exp", inputs, backend="jax")(params)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Tuple, Union

import numpy as np

from spatial_gev.backends import BackendLike, resolve_backend
from spatial_gev.data import (
    AbExpParams,
    AbMaternParams,
    AbSpdeParams,
    AbsExpParams,
    AExpParams,
    KernelInputs,
    SpdeInputs,
)
from spatial_gev.exceptions import DataError, ParameterError
from spatial_gev.gev import accumulate_data_nll
from spatial_gev.kernels import build_exponential, build_matern
from spatial_gev.latent import coefficient_prior_nll, detrend, gmrf_penalty, mvn_penalty
from spatial_gev.spde import build_spde_precision, marginal_variance


class ModelVariant(str, Enum):
    A_EXP = "a_exp"
    AB_EXP = "ab_exp"
    AB_MATERN = "ab_matern"
    AB_SPDE = "ab_spde"
    ABS_EXP = "abs_exp"


@dataclass(frozen=True)
class VariantSpec:
    """
    Which primitives a model variant is assembled from.

    Attributes
    ----------
    fields : tuple of str
        Parameters modelled as spatial fields, from {"a", "log_b", "s"}
    kernel : str
        "exponential", "matern" or "spde"
    covariates_required : bool
        Every field must come with a design matrix
    shape_prior : bool
        Add the normal prior on the stored shape parameter
    params_type, inputs_type : type
        Parameter NamedTuple and data class of the variant
    """
    fields: Tuple[str, ...]
    kernel: str
    covariates_required: bool
    shape_prior: bool
    params_type: type
    inputs_type: type


VARIANTS = {
    ModelVariant.A_EXP: VariantSpec(
        ("a",), "exponential", False, True, AExpParams, KernelInputs),
    ModelVariant.AB_EXP: VariantSpec(
        ("a", "log_b"), "exponential", False, True, AbExpParams, KernelInputs),
    ModelVariant.AB_MATERN: VariantSpec(
        ("a", "log_b"), "matern", False, True, AbMaternParams, KernelInputs),
    ModelVariant.AB_SPDE: VariantSpec(
        ("a", "log_b"), "spde", False, True, AbSpdeParams, SpdeInputs),
    # The shape field carries no separate normal prior in this variant.
    ModelVariant.ABS_EXP: VariantSpec(
        ("a", "log_b", "s"), "exponential", True, False, AbsExpParams, KernelInputs),
}

# Suffix of the hyperparameter and coefficient names of each field.
_TAG = {"a": "a", "log_b": "b", "s": "s"}


def _hyper(params, name: str, field: str, xp):
    return xp.exp(getattr(params, f"log_{name}_{_TAG[field]}"))


def _exponential_penalty(inputs, params, field, x, be):
    sigma = _hyper(params, "sigma", field, be.xp)
    ell = _hyper(params, "ell", field, be.xp)
    cov = build_exponential(inputs.dd, sigma, ell, inputs.threshold, backend=be)
    return mvn_penalty(cov, x, backend=be)


def _matern_penalty(inputs, params, field, x, be):
    phi = _hyper(params, "phi", field, be.xp)
    kappa = _hyper(params, "kappa", field, be.xp)
    cov = build_matern(inputs.dd, phi, kappa, inputs.threshold, backend=be)
    return mvn_penalty(cov, x, backend=be)


def _spde_penalty(inputs, params, field, x, be):
    sigma = _hyper(params, "sigma", field, be.xp)
    kappa = _hyper(params, "kappa", field, be.xp)
    Q = build_spde_precision(inputs.operator, kappa, backend=be)
    scale = sigma / marginal_variance(kappa, inputs.nu, backend=be)
    return gmrf_penalty(Q, scale, x, backend=be)


_PENALTIES = {
    "exponential": _exponential_penalty,
    "matern": _matern_penalty,
    "spde": _spde_penalty,
}


def _check_params(spec: VariantSpec, inputs, params) -> None:
    """Fail loudly on shape mismatches between parameters and data."""
    if not isinstance(inputs, spec.inputs_type):
        raise DataError(
            f"Expected {spec.inputs_type.__name__}, got {type(inputs).__name__}"
        )
    if not isinstance(params, spec.params_type):
        raise ParameterError(
            f"Expected {spec.params_type.__name__}, got {type(params).__name__}"
        )

    for name in ("a", "log_b", "s"):
        value = getattr(params, name)
        if name in spec.fields:
            if np.shape(value) != (inputs.n_field,):
                raise ParameterError(
                    f"{name} must have shape ({inputs.n_field},), got {np.shape(value)}"
                )
        elif np.ndim(value) != 0:
            raise ParameterError(f"{name} must be a scalar, got shape {np.shape(value)}")
        elif inputs.design_matrix(name) is not None:
            raise DataError(
                f"design_mat_{_TAG[name]} given but {name} is not a spatial field "
                f"in this model"
            )

    for field in spec.fields:
        design = inputs.design_matrix(field)
        beta = getattr(params, f"beta_{_TAG[field]}", None)
        if design is None:
            if spec.covariates_required:
                raise DataError(f"design matrix for {field} is required")
            if beta is not None:
                raise ParameterError(f"beta_{_TAG[field]} given without a design matrix")
        elif beta is None or np.shape(beta) != (design.shape[1],):
            raise ParameterError(
                f"beta_{_TAG[field]} must have shape ({design.shape[1]},), "
                f"got {None if beta is None else np.shape(beta)}"
            )


def _assemble(variant: "ModelVariant", inputs, params, backend: BackendLike):
    spec = VARIANTS[ModelVariant(variant)]
    be = resolve_backend(backend)
    _check_params(spec, inputs, params)
    penalty = _PENALTIES[spec.kernel]
    obs = inputs.observations

    nll = 0.0
    with be.errstate():
        for field in spec.fields:
            design = inputs.design_matrix(field)
            beta = getattr(params, f"beta_{_TAG[field]}", None)
            x = detrend(getattr(params, field), design, beta, backend=be)
            if design is not None:
                nll = nll + coefficient_prior_nll(beta, inputs.beta_prior, backend=be)
            nll = nll + penalty(inputs, params, field, x, be)

        nll = accumulate_data_nll(
            nll, obs.y, inputs.observation_index(),
            params.a, params.log_b, params.s,
            obs.reparam_s, obs.s_mean, obs.s_sd,
            shape_prior=spec.shape_prior, backend=be,
        )
    return nll


def model_a_exp(inputs: KernelInputs, params: AExpParams, backend: BackendLike = None):
    """
    a ~ GP(X_a beta_a, Sigma_a(sigma_a, ell_a)); log_b and s are scalars.

    Covariates on a are optional.
    """
    return _assemble(ModelVariant.A_EXP, inputs, params, backend)


def model_ab_exp(inputs: KernelInputs, params: AbExpParams, backend: BackendLike = None):
    """
    a ~ GP(., Sigma_a(sigma_a, ell_a)), log_b ~ GP(., Sigma_b(sigma_b, ell_b)).
    """
    return _assemble(ModelVariant.AB_EXP, inputs, params, backend)


def model_ab_matern(inputs: KernelInputs, params: AbMaternParams, backend: BackendLike = None):
    """
    a ~ GP(., Matern(phi_a, kappa_a)), log_b ~ GP(., Matern(phi_b, kappa_b)).

    ``inputs.threshold`` is a literal cutoff for the Matern kernel; use
    ``math.inf`` for dense covariances.
    """
    return _assemble(ModelVariant.AB_MATERN, inputs, params, backend)


def model_ab_spde(inputs: SpdeInputs, params: AbSpdeParams, backend: BackendLike = None):
    """
    a and log_b are SPDE Matern fields on the mesh nodes.

    Each field has precision Q(kappa) scaled by sigma / marginal_variance.
    """
    return _assemble(ModelVariant.AB_SPDE, inputs, params, backend)


def model_abs_exp(inputs: KernelInputs, params: AbsExpParams, backend: BackendLike = None):
    """
    a, log_b and the stored shape s are exponential-kernel fields around
    regression means.  The shape is transformed per location and has no
    separate normal prior.
    """
    return _assemble(ModelVariant.ABS_EXP, inputs, params, backend)


def negative_log_likelihood(
    variant: Union[str, ModelVariant],
    inputs,
    params,
    backend: BackendLike = None,
):
    """
    Evaluate the negative log-likelihood of any variant.

    :param variant: Variant name (e.g. ``"ab_spde"``) or ModelVariant
    :param inputs: KernelInputs or SpdeInputs
    :param params: Parameter NamedTuple of the variant
    :param backend: Array backend
    :return: Scalar negative log-likelihood (possibly non-finite)
    """
    try:
        variant = ModelVariant(variant)
    except ValueError:
        raise ValueError(
            f"Unknown model variant {variant!r}. "
            f"Choose from: {[v.value for v in ModelVariant]}"
        ) from None
    return _assemble(variant, inputs, params, backend)


def make_objective(
    variant: Union[str, ModelVariant],
    inputs,
    backend: BackendLike = None,
) -> Callable:
    """
    Bind the data of a model and return ``params -> nll``.

    The returned function is what an optimizer or autodiff host calls.
    """
    be = resolve_backend(backend)
    variant = ModelVariant(variant)

    def objective(params):
        return _assemble(variant, inputs, params, be)

    return objective


def _float_leaves(params, be):
    """Cast every non-None parameter to a float array of the backend."""
    if not hasattr(params, "_asdict"):
        return params
    return params._replace(**{
        name: be.asarray(value)
        for name, value in params._asdict().items() if value is not None
    })


def value_and_grad(
    variant: Union[str, ModelVariant],
    inputs,
    backend: BackendLike = "jax",
) -> Callable:
    """
    Return a compiled ``params -> (nll, grad)`` function.

    The gradient has the same NamedTuple structure as ``params``.  Integer
    parameter values are cast to floats before differentiation.  Only
    backends with automatic differentiation (JAX) support this.
    """
    be = resolve_backend(backend)
    compiled = be.value_and_grad(make_objective(variant, inputs, be))

    def evaluate(params):
        return compiled(_float_leaves(params, be))

    return evaluate

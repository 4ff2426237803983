"""
Backend configuration for the spatial_gev package.

Controls which array library evaluates the likelihood.  The NumPy/SciPy
backend is the default; the JAX backend makes every model differentiable
with ``jax.grad`` and compilable with ``jax.jit``.

Resolution order (first match wins):

1. A backend name or instance passed directly to a model function.
2. Programmatic override via :func:`set_backend`.
3. The ``SPATIAL_GEV_BACKEND`` environment variable.
4. ``"numpy"``.

Examples
--------
Select JAX from the shell::

    export SPATIAL_GEV_BACKEND=jax

Select JAX programmatically::

    import spatial_gev
    spatial_gev.set_backend("jax")
"""

from __future__ import annotations

import os

_VALID_BACKENDS = {"jax", "numpy"}

_ENV_VAR = "SPATIAL_GEV_BACKEND"

# Sentinel indicating "no programmatic override has been set".
_backend_override: str | None = None


def get_backend() -> str:
    """
    Return the configured backend name (``"jax"`` or ``"numpy"``).

    :raises ValueError: If the environment variable names an unknown backend
    """
    if _backend_override is not None:
        return _backend_override

    env = os.environ.get(_ENV_VAR, "").strip().lower()
    if env:
        if env not in _VALID_BACKENDS:
            raise ValueError(
                f"{_ENV_VAR}={env!r} is not a recognised backend. "
                f"Choose from: {sorted(_VALID_BACKENDS)}"
            )
        return env

    return "numpy"


def set_backend(name: str | None) -> None:
    """
    Override the backend selection.

    :param name: ``"jax"`` or ``"numpy"`` (case-insensitive), or None to
        clear the override and fall back to the environment variable
    :raises ValueError: If *name* is not a recognised backend
    """
    global _backend_override
    if name is None:
        _backend_override = None
        return
    normalised = name.strip().lower()
    if normalised not in _VALID_BACKENDS:
        raise ValueError(
            f"Unknown backend '{name}'. Choose from: {sorted(_VALID_BACKENDS)}"
        )
    _backend_override = normalised

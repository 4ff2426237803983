"""
SPDE precision matrices for Matern Gaussian Markov random fields.

A Matern field with smoothness nu = 1 in two dimensions is the solution of
    (kappa^2 - delta) u(s) = W(s)
and its finite-element discretization on a triangular mesh has the sparse
precision
    Q = kappa^4 * M0 + 2 * kappa^2 * M1 + M2
following Lindgren et al, 2011.  The triple (M0, M1, M2) depends only on
the mesh and is precomputed once; Q is rebuilt for every kappa.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Mapping, Tuple

import numpy as np
from scipy import sparse

from spatial_gev.backends import BackendLike, resolve_backend
from spatial_gev.exceptions import MatrixError, MeshError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SPDEOperator:
    """
    Finite-element matrices of the SPDE on a fixed mesh.

    Attributes
    ----------
    M0 : sparse.csr_matrix
        Lumped mass matrix (diagonal)
    M1 : sparse.csr_matrix
        Stiffness matrix
    M2 : sparse.csr_matrix
        M1 * M0^(-1) * M1
    """
    M0: sparse.csr_matrix
    M1: sparse.csr_matrix
    M2: sparse.csr_matrix

    def __post_init__(self):
        shape = None
        for name in ("M0", "M1", "M2"):
            try:
                m = sparse.csr_matrix(getattr(self, name), dtype=float)
            except (TypeError, ValueError) as e:
                raise MatrixError(f"{name} is not convertible to a sparse matrix: {e}") from e
            if m.shape[0] != m.shape[1]:
                raise MatrixError(f"{name} must be square, got shape {m.shape}")
            if shape is not None and m.shape != shape:
                raise MatrixError(f"{name} has shape {m.shape}, expected {shape}")
            if not np.all(np.isfinite(m.data)):
                raise MatrixError(f"{name} contains NaN or infinite values")
            shape = m.shape
            object.__setattr__(self, name, m)

    @property
    def n_nodes(self) -> int:
        """Number of mesh nodes (size of the latent field)."""
        return self.M0.shape[0]

    @classmethod
    def from_mapping(cls, matrices: Mapping) -> "SPDEOperator":
        """
        Build from a mapping with keys ``"M0"``, ``"M1"``, ``"M2"``.

        This matches the ``param.inla`` component R-INLA's
        ``inla.spde2.matern`` exports.
        """
        missing = {"M0", "M1", "M2"} - set(matrices)
        if missing:
            raise MatrixError(f"SPDE operator is missing matrices: {sorted(missing)}")
        return cls(matrices["M0"], matrices["M1"], matrices["M2"])


def build_spde_precision(operator: SPDEOperator, kappa, backend: BackendLike = None):
    """
    Compute the GMRF precision matrix for range parameter kappa.

    Parameters
    ----------
    operator : SPDEOperator
        Precomputed finite-element matrices
    kappa : float or array scalar
        SPDE range parameter (range is about sqrt(8 * nu) / kappa)
    backend : str or ArrayBackend, optional
        NumPy returns a scipy sparse matrix, JAX a dense array

    Returns
    -------
    Precision matrix Q of shape (n_nodes, n_nodes)
    """
    be = resolve_backend(backend)
    M0, M1, M2 = be.operator_matrices(operator)
    kappa2 = kappa ** 2
    return M0 * kappa2 ** 2 + M1 * (2.0 * kappa2) + M2


def marginal_variance(kappa, nu, backend: BackendLike = None):
    """
    Marginal variance of the unscaled SPDE field.

    :param kappa: SPDE range parameter
    :param nu: Matern smoothness (fixed, not estimated)
    :param backend: Array backend
    :return: Gamma(nu) / (Gamma(nu + 1) * 4 * pi * kappa^(2 nu))
    """
    be = resolve_backend(backend)
    xp = be.xp
    return xp.exp(be.gammaln(nu) - be.gammaln(nu + 1.0)) / (
        4.0 * np.pi * kappa ** (2.0 * nu)
    )


def spde_operator_from_mesh(
    vertices: np.ndarray,
    triangles: np.ndarray,
    verbose: bool = False
) -> SPDEOperator:
    """
    Compute the SPDE operator (M0, M1, M2) of a triangular mesh.

    Uses linear elements: M0 is the lumped mass matrix, M1 the stiffness
    matrix G and M2 = G M0^(-1) G.

    Parameters
    ----------
    vertices : np.ndarray
        Mesh vertex coordinates of shape (n_mesh, 2)
    triangles : np.ndarray
        Triangle connectivity of shape (n_tri, 3)
    verbose : bool
        Print matrix diagnostics

    Returns
    -------
    SPDEOperator
    """
    vertices = np.asarray(vertices, dtype=float)
    triangles = np.asarray(triangles)

    if vertices.ndim != 2 or vertices.shape[1] != 2:
        raise MeshError(f"Expected vertices shape (n_mesh, 2), got {vertices.shape}")
    if triangles.ndim != 2 or triangles.shape[1] != 3:
        raise MeshError(f"Expected triangles shape (n_tri, 3), got {triangles.shape}")
    if not np.issubdtype(triangles.dtype, np.integer):
        raise MeshError("Triangle connectivity must be integer vertex indices")
    if triangles.size and (triangles.min() < 0 or triangles.max() >= len(vertices)):
        raise MeshError("Triangle connectivity references vertices outside the mesh")

    n_vertices = len(vertices)
    tri_coords = vertices[triangles]
    areas = _triangle_areas(tri_coords)

    degenerate_mask = areas <= 1e-12
    if np.any(degenerate_mask):
        warnings.warn(f"Found {np.sum(degenerate_mask)} degenerate triangles, skipping")
        triangles = triangles[~degenerate_mask]
        tri_coords = tri_coords[~degenerate_mask]
        areas = areas[~degenerate_mask]

    # Lumped mass: each triangle gives a third of its area to each vertex
    c0 = np.bincount(triangles.ravel(), weights=np.repeat(areas / 3.0, 3),
                     minlength=n_vertices)
    if np.any(c0 <= 0):
        raise MeshError(
            f"{np.sum(c0 <= 0)} vertices do not belong to any triangle"
        )

    G = _stiffness_matrix(triangles, tri_coords, areas, n_vertices)
    M0 = sparse.diags(c0, format="csr")
    M2 = (G @ sparse.diags(1.0 / c0) @ G).tocsr()

    operator = SPDEOperator(M0, G, M2)
    logger.debug(
        "SPDE operator: %d nodes, %d triangles, %d non-zeros in M2",
        n_vertices, len(triangles), M2.nnz
    )
    if verbose:
        _print_operator_diagnostics(operator, len(triangles))
    return operator


def _triangle_areas(tri_coords: np.ndarray) -> np.ndarray:
    """Areas of triangles given as an array of shape (n_tri, 3, 2)."""
    v1, v2, v3 = tri_coords[:, 0], tri_coords[:, 1], tri_coords[:, 2]
    return 0.5 * np.abs(
        (v2[:, 0] - v1[:, 0]) * (v3[:, 1] - v1[:, 1]) -
        (v3[:, 0] - v1[:, 0]) * (v2[:, 1] - v1[:, 1])
    )


def _basis_gradients(tri_coords: np.ndarray) -> np.ndarray:
    """
    Gradients of the three linear basis functions on each triangle.

    For psi_1 = 1 - xi - eta, psi_2 = xi, psi_3 = eta in local
    coordinates, the gradients are rows of B^(-1) with B = [v2-v1, v3-v1].

    Returns
    -------
    np.ndarray
        Gradients of shape (n_tri, 3, 2)
    """
    v1, v2, v3 = tri_coords[:, 0], tri_coords[:, 1], tri_coords[:, 2]
    B = np.stack([v2 - v1, v3 - v1], axis=2)
    det_B = B[:, 0, 0] * B[:, 1, 1] - B[:, 0, 1] * B[:, 1, 0]

    B_inv = np.empty_like(B)
    B_inv[:, 0, 0] = B[:, 1, 1] / det_B
    B_inv[:, 0, 1] = -B[:, 0, 1] / det_B
    B_inv[:, 1, 0] = -B[:, 1, 0] / det_B
    B_inv[:, 1, 1] = B[:, 0, 0] / det_B

    gradients = np.empty((len(tri_coords), 3, 2))
    gradients[:, 0, :] = -(B_inv[:, 0, :] + B_inv[:, 1, :])
    gradients[:, 1, :] = B_inv[:, 0, :]
    gradients[:, 2, :] = B_inv[:, 1, :]
    return gradients


def _stiffness_matrix(
    triangles: np.ndarray,
    tri_coords: np.ndarray,
    areas: np.ndarray,
    n_vertices: int
) -> sparse.csr_matrix:
    """Stiffness matrix G[i,j] = integral(grad(psi_i) . grad(psi_j) ds)."""
    gradients = _basis_gradients(tri_coords)

    rows, cols, data = [], [], []
    for local_i in range(3):
        for local_j in range(3):
            rows.append(triangles[:, local_i])
            cols.append(triangles[:, local_j])
            data.append(
                areas * np.sum(gradients[:, local_i, :] * gradients[:, local_j, :], axis=1)
            )

    G = sparse.coo_matrix(
        (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
        shape=(n_vertices, n_vertices)
    ).tocsr()
    G.eliminate_zeros()
    return G


def _matrix_summary(name: str, m: sparse.csr_matrix) -> Tuple[str, int]:
    density = m.nnz / (m.shape[0] * m.shape[1]) * 100
    return f"  {name} matrix: {m.shape[0]}x{m.shape[1]}, {m.nnz:,} non-zeros ({density:.2f}% dense)", m.nnz


def _print_operator_diagnostics(operator: SPDEOperator, n_triangles: int) -> None:
    """Print matrix diagnostics for user information."""
    print("\nSPDE Operator Diagnostics:")
    print(f"  Mesh: {operator.n_nodes} vertices, {n_triangles} triangles")
    total_nnz = 0
    for name in ("M0", "M1", "M2"):
        line, nnz = _matrix_summary(name, getattr(operator, name))
        print(line)
        total_nnz += nnz
    print(f"  Estimated memory: {total_nnz * 8 / (1024 * 1024):.1f} MB")

"""
Location preprocessing: distance matrices and mesh indices.

Kernel models read an (n, n) distance matrix; SPDE models read the mesh
node of every location.  Both are built here from coordinates, once,
before any likelihood evaluation.
"""

import logging
import warnings
from typing import Optional

import numpy as np
import pyproj
from scipy.spatial import KDTree
from scipy.spatial.distance import pdist, squareform

from spatial_gev.exceptions import DataError, MatrixError, MeshError

logger = logging.getLogger(__name__)

_UNIT_SCALE = {'m': 1.0, 'km': 1000.0}


def is_geographic(coords: np.ndarray) -> bool:
    """
    Detect if coordinates are in lon/lat format using value range.

    :param coords: Coordinate array of shape (n, 2)
    :return: True if coordinates appear to be geographic (lon/lat)
    """
    x_vals, y_vals = coords[:, 0], coords[:, 1]
    lon_range = np.all((-180 <= x_vals) & (x_vals <= 180))
    lat_range = np.all((-90 <= y_vals) & (y_vals <= 90))
    return bool(lon_range and lat_range)


def _check_coords(coords) -> np.ndarray:
    coords = np.asarray(coords, dtype=float)
    if coords.ndim != 2 or coords.shape[1] != 2:
        raise DataError(f"Expected coords shape (n, 2), got {coords.shape}")
    if np.any(~np.isfinite(coords)):
        raise DataError("Coordinates contain NaN or infinite values")
    return coords


def geodesic_distance_matrix(coords: np.ndarray, units: str = 'km') -> np.ndarray:
    """
    Pairwise geodesic distances on the WGS84 ellipsoid.

    :param coords: Geographic coordinates (lon, lat) of shape (n, 2)
    :param units: 'km' or 'm'
    :return: Symmetric distance matrix of shape (n, n)
    """
    coords = _check_coords(coords)
    if units not in _UNIT_SCALE:
        raise ValueError(f"units must be one of {sorted(_UNIT_SCALE)}, got {units!r}")

    n = len(coords)
    if n < 2:
        return np.zeros((n, n))
    i, j = np.triu_indices(n, k=1)
    geod = pyproj.Geod(ellps='WGS84')
    _, _, dist_m = geod.inv(coords[i, 0], coords[i, 1], coords[j, 0], coords[j, 1])

    dd = np.zeros((n, n))
    dd[i, j] = np.asarray(dist_m) / _UNIT_SCALE[units]
    return dd + dd.T


def distance_matrix(
    coords: np.ndarray,
    geographic: Optional[bool] = False,
    units: str = 'km'
) -> np.ndarray:
    """
    Distance matrix for a set of locations.

    :param coords: Coordinates of shape (n, 2), lon/lat or projected
    :param geographic: Treat coords as lon/lat on the WGS84 ellipsoid.
        None guesses from the value range and warns when it picks lon/lat,
        since small planar coordinates also fall inside that range.
    :param units: Output units for geographic coordinates ('km' or 'm');
        projected coordinates keep their own units
    :return: Symmetric distance matrix with zero diagonal
    """
    coords = _check_coords(coords)
    if geographic is None:
        geographic = is_geographic(coords)
        if geographic:
            warnings.warn(
                "Coordinates look like lon/lat; computing geodesic distances in "
                f"{units}. Pass geographic=False for planar coordinates."
            )
        logger.debug("Detected %s coordinates", "geographic" if geographic else "projected")

    if geographic:
        return geodesic_distance_matrix(coords, units=units)
    return squareform(pdist(coords))


def validate_distance_matrix(dd, atol: float = 1e-8) -> np.ndarray:
    """
    Check that dd is a valid distance matrix.

    :param dd: Candidate matrix
    :param atol: Tolerance for the symmetry and zero-diagonal checks
    :return: dd as a float array
    :raises MatrixError: If dd is not square, finite, non-negative,
        symmetric with zero diagonal
    """
    dd = np.asarray(dd, dtype=float)
    if dd.ndim != 2 or dd.shape[0] != dd.shape[1]:
        raise MatrixError(f"Distance matrix must be square, got shape {dd.shape}")
    if not np.all(np.isfinite(dd)):
        raise MatrixError("Distance matrix contains NaN or infinite values")
    if np.any(dd < 0):
        raise MatrixError("Distance matrix has negative entries")
    if not np.allclose(dd, dd.T, rtol=0.0, atol=atol):
        raise MatrixError("Distance matrix is not symmetric")
    if np.any(np.abs(np.diag(dd)) > atol):
        raise MatrixError("Distance matrix has a non-zero diagonal")
    return dd


def mesh_node_index(
    vertices: np.ndarray,
    coords: np.ndarray,
    tolerance: float = 1e-6
) -> np.ndarray:
    """
    Mesh node of every location (``meshidxloc`` of the SPDE models).

    Every location must coincide with a mesh vertex, as it does for meshes
    built with the locations as initial vertices.

    :param vertices: Mesh vertex coordinates of shape (n_mesh, 2)
    :param coords: Location coordinates of shape (n, 2)
    :param tolerance: Maximum distance between a location and its vertex
    :return: Integer vertex index per location
    :raises MeshError: If a location is not on a vertex
    """
    vertices = _check_coords(vertices)
    coords = _check_coords(coords)

    distances, index = KDTree(vertices).query(coords)
    off_mesh = distances > tolerance
    if np.any(off_mesh):
        raise MeshError(
            f"{np.sum(off_mesh)} locations are not mesh vertices "
            f"(largest gap {distances.max():.3g}, tolerance {tolerance})"
        )
    return index.astype(int)

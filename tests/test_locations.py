"""
Unit tests for spatial_gev.locations module.

Tests distance matrices from planar and geographic coordinates, distance
matrix validation and the location-to-mesh-node mapping.
"""

import numpy as np
import pytest

from spatial_gev.exceptions import DataError, MatrixError, MeshError
from spatial_gev.locations import (
    distance_matrix,
    geodesic_distance_matrix,
    is_geographic,
    mesh_node_index,
    validate_distance_matrix,
)


class TestDistanceMatrix:
    """Test distance matrix construction."""

    def test_planar(self):
        coords = np.array([[0.0, 0.0], [3.0, 0.0], [0.0, 4.0]])
        dd = distance_matrix(coords, geographic=False)
        np.testing.assert_allclose(dd, [[0, 3, 4], [3, 0, 5], [4, 5, 0]])

    def test_small_planar_coords_stay_planar(self):
        """Unit-square coordinates are not rescaled to geodesic kilometres."""
        coords = np.array([[0.0, 0.0], [1.0, 0.0]])
        np.testing.assert_allclose(distance_matrix(coords)[0, 1], 1.0)

    def test_projected_coords_detected(self):
        coords = np.array([[552000.0, 4182000.0], [554000.0, 4182000.0]])
        assert not is_geographic(coords)
        np.testing.assert_allclose(distance_matrix(coords, geographic=None)[0, 1], 2000.0)

    def test_detected_geographic_warns(self):
        coords = np.array([[0.0, 0.0], [1.0, 0.0]])
        assert is_geographic(coords)
        with pytest.warns(UserWarning, match="lon/lat"):
            dd = distance_matrix(coords, geographic=None)
        np.testing.assert_allclose(dd[0, 1], 111.32, rtol=1e-3)

    def test_geodesic_along_equator(self):
        """One degree of longitude on the WGS84 equator is about 111.32 km."""
        coords = np.array([[0.0, 0.0], [1.0, 0.0]])
        dd = distance_matrix(coords, geographic=True)
        np.testing.assert_allclose(dd[0, 1], 111.32, rtol=1e-3)
        np.testing.assert_allclose(dd, dd.T)
        np.testing.assert_array_equal(np.diag(dd), 0.0)

    def test_geodesic_units(self):
        coords = np.array([[-79.4, 43.7], [-75.7, 45.4], [-73.6, 45.5]])
        km = geodesic_distance_matrix(coords, units='km')
        m = geodesic_distance_matrix(coords, units='m')
        np.testing.assert_allclose(m, 1000.0 * km)
        with pytest.raises(ValueError, match="units"):
            geodesic_distance_matrix(coords, units='miles')

    def test_geodesic_crosses_antimeridian(self):
        coords = np.array([[179.5, 0.0], [-179.5, 0.0]])
        dd = geodesic_distance_matrix(coords)
        np.testing.assert_allclose(dd[0, 1], 111.32, rtol=1e-3)

    def test_single_location(self):
        np.testing.assert_array_equal(geodesic_distance_matrix(np.array([[10.0, 50.0]])), [[0.0]])

    def test_rejects_bad_coords(self):
        with pytest.raises(DataError, match="shape"):
            distance_matrix(np.zeros((3, 3)))
        with pytest.raises(DataError, match="NaN"):
            distance_matrix(np.array([[0.0, np.nan], [1.0, 1.0]]))


class TestValidateDistanceMatrix:
    """Test distance matrix validation."""

    def test_valid(self):
        dd = np.array([[0.0, 2.0], [2.0, 0.0]])
        np.testing.assert_array_equal(validate_distance_matrix(dd), dd)

    @pytest.mark.parametrize("dd,message", [
        (np.zeros((2, 3)), "square"),
        (np.array([[0.0, -1.0], [-1.0, 0.0]]), "negative"),
        (np.array([[0.0, 1.0], [2.0, 0.0]]), "symmetric"),
        (np.array([[1.0, 1.0], [1.0, 0.0]]), "diagonal"),
        (np.array([[0.0, np.inf], [np.inf, 0.0]]), "infinite"),
    ])
    def test_invalid(self, dd, message):
        with pytest.raises(MatrixError, match=message):
            validate_distance_matrix(dd)


class TestMeshNodeIndex:
    """Test mapping locations onto mesh vertices."""

    def setup_method(self):
        x = np.linspace(0, 1, 3)
        xx, yy = np.meshgrid(x, x)
        self.vertices = np.column_stack([xx.ravel(), yy.ravel()])

    def test_locations_on_vertices(self):
        coords = np.array([[0.5, 0.5], [1.0, 0.0], [0.0, 1.0]])
        np.testing.assert_array_equal(mesh_node_index(self.vertices, coords), [4, 2, 6])

    def test_location_off_mesh(self):
        with pytest.raises(MeshError, match="not mesh vertices"):
            mesh_node_index(self.vertices, np.array([[0.25, 0.25]]))

"""Custom exceptions for spatial_gev package"""

class SpatialGevError(Exception):
    """Base exception for spatial_gev package"""
    pass

class DataError(SpatialGevError):
    """Raised when observation data violate the layout contract"""
    pass

class ParameterError(SpatialGevError):
    """Raised when parameter shapes do not match the model data"""
    pass

class MatrixError(SpatialGevError):
    """Raised for malformed distance matrices or SPDE operators"""
    pass

class MeshError(SpatialGevError):
    """Raised for triangulation errors and locations off the mesh"""
    pass

class BackendError(SpatialGevError):
    """Raised for unknown backends or operations a backend cannot do"""
    pass

class NotPositiveDefiniteWarning(RuntimeWarning):
    """Issued when a covariance or precision matrix fails to factorize"""
    pass

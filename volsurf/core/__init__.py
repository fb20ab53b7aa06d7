"""Core data structures for scalar volumes and isosurfaces."""

from .errors import VolumeError, InvalidDimensions, OffloadTransportError, WorkerStateError
from .field import ScalarField
from .frame import CoordinateFrame
from .surface import Surface
from .extract import SurfaceExtractor
from .filter_view import FilterView
from .registry import VolumeRegistry, InMemoryRegistry
from .volume import Volume

__all__ = [
    "VolumeError",
    "InvalidDimensions",
    "OffloadTransportError",
    "WorkerStateError",
    "ScalarField",
    "CoordinateFrame",
    "Surface",
    "SurfaceExtractor",
    "FilterView",
    "VolumeRegistry",
    "InMemoryRegistry",
    "Volume",
]

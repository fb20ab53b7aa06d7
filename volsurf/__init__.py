"""volsurf — 3D 스칼라 볼륨과 등치면(isosurface) 추출.

사용 예:
    from volsurf import Volume

    vol = Volume("ct", "", samples, nx, ny, nz)
    vol.set_transform(affine)
    surface = vol.get_surface(isolevel=300.0, smooth=2)

    future = vol.get_surface_async(smooth=2)
    surface = future.result()
"""

from .config import VolumeConfig
from .core import (
    CoordinateFrame,
    FilterView,
    InMemoryRegistry,
    InvalidDimensions,
    OffloadTransportError,
    ScalarField,
    Surface,
    SurfaceExtractor,
    Volume,
    VolumeError,
    WorkerStateError,
)

__version__ = "0.1.0"

__all__ = [
    "VolumeConfig",
    "Volume",
    "ScalarField",
    "CoordinateFrame",
    "SurfaceExtractor",
    "FilterView",
    "Surface",
    "InMemoryRegistry",
    "VolumeError",
    "InvalidDimensions",
    "OffloadTransportError",
    "WorkerStateError",
]

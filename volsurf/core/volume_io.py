"""볼륨/등치면 파일 입출력.

- .npz: Volume.to_dict() / Surface.to_dict() 스냅샷 (배열 + JSON 메타데이터)
- NRRD/NIFTI/MetaImage: SimpleITK로 로드, origin/spacing/direction → 변환 행렬
- .obj: 등치면 Wavefront OBJ 내보내기
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

import numpy as np

from .surface import Surface
from .volume import Volume

try:
    import SimpleITK as sitk
except ImportError:
    sitk = None

logger = logging.getLogger(__name__)

SITK_EXTENSIONS = {".nrrd", ".nhdr", ".nii", ".nii.gz", ".mha", ".mhd"}

_VOLUME_ARRAYS = ("samples", "sample_owner")
_SURFACE_ARRAYS = ("position", "index", "normal", "owner")


def _suffix(path: Path) -> str:
    """확장자 (소문자, .nii.gz 처리)."""
    name = path.name.lower()
    if name.endswith(".nii.gz"):
        return ".nii.gz"
    return path.suffix.lower()


def _check_sitk():
    """SimpleITK 설치 확인."""
    if sitk is None:
        raise ImportError(
            "SimpleITK가 설치되지 않았습니다. "
            "'pip install SimpleITK' 또는 'uv add SimpleITK'로 설치하세요."
        )


@dataclass
class ImageGeometry:
    """의료 영상 격자 배치 정보.

    Attributes:
        origin: 첫 복셀 중심의 월드 좌표 (x, y, z)
        spacing: 복셀 간격 (sx, sy, sz)
        direction: 3x3 방향 행렬 (행 우선 9개 값)
    """
    origin: Tuple[float, float, float]
    spacing: Tuple[float, float, float]
    direction: Tuple[float, ...]

    def to_matrix(self) -> np.ndarray:
        """격자 → 월드 4x4 행렬: world = D · diag(spacing) · ijk + origin."""
        m = np.eye(4)
        d = np.asarray(self.direction, dtype=np.float64).reshape(3, 3)
        m[:3, :3] = d @ np.diag(self.spacing)
        m[:3, 3] = self.origin
        return m


# ── npz 스냅샷 ──

def _write_npz(path: Path, data: dict, array_keys) -> None:
    arrays = {}
    meta = {}
    for key, value in data.items():
        if key in array_keys:
            if value is not None:
                arrays[key] = np.asarray(value)
        else:
            meta[key] = value
    np.savez_compressed(path, meta=np.array(json.dumps(meta)), **arrays)


def _read_npz(path: Path, array_keys) -> dict:
    with np.load(path, allow_pickle=False) as npz:
        data = json.loads(str(npz["meta"]))
        for key in array_keys:
            data[key] = npz[key] if key in npz.files else None
    return data


def save_volume(path: Union[str, Path], volume: Volume) -> Path:
    """볼륨을 .npz 스냅샷으로 저장.

    Returns:
        저장된 파일 경로
    """
    path = Path(path)
    if _suffix(path) != ".npz":
        raise ValueError(f"볼륨 저장은 .npz만 지원합니다: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    _write_npz(path, volume.to_dict(), _VOLUME_ARRAYS)
    logger.info("볼륨 저장: %s (%d 샘플)", path, volume.field.n_samples)
    return path


def load_volume(path: Union[str, Path], **kwargs) -> Volume:
    """볼륨 파일 로드.

    Args:
        path: .npz 스냅샷 또는 NRRD/NIFTI/MetaImage 파일
        **kwargs: Volume 생성자 키워드 (registry, config)

    Returns:
        Volume (의료 영상은 origin/spacing/direction이 변환 행렬로 설정됨)
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"파일을 찾을 수 없습니다: {path}")

    suffix = _suffix(path)
    if suffix == ".npz":
        data = _read_npz(path, _VOLUME_ARRAYS)
        if (data.get("metadata") or {}).get("type") != "Volume":
            raise ValueError(f"볼륨 스냅샷이 아닙니다: {path}")
        return Volume.from_dict(data, **kwargs)

    if suffix in SITK_EXTENSIONS:
        return _load_image(path, **kwargs)

    raise ValueError(
        f"지원하지 않는 볼륨 형식: {suffix} "
        f"(지원: .npz, {', '.join(sorted(SITK_EXTENSIONS))})"
    )


def _load_image(path: Path, **kwargs) -> Volume:
    _check_sitk()

    image = sitk.ReadImage(str(path))
    if image.GetDimension() != 3:
        raise ValueError(f"3차원 영상만 지원합니다 (dimension={image.GetDimension()}): {path}")

    geometry = ImageGeometry(
        origin=tuple(image.GetOrigin()),
        spacing=tuple(image.GetSpacing()),
        direction=tuple(image.GetDirection()),
    )

    # SimpleITK 배열은 (z, y, x) 순서이므로 평탄화하면 x가 가장 빠르게 변한다
    samples = sitk.GetArrayFromImage(image).reshape(-1)
    nx, ny, nz = image.GetSize()

    vol = Volume(path.name, str(path), samples, nx, ny, nz, **kwargs)
    vol.set_transform(geometry.to_matrix())
    logger.info("영상 로드: %s (%dx%dx%d, spacing=%s)", path, nx, ny, nz, geometry.spacing)
    return vol


# ── 등치면 ──

def save_surface(path: Union[str, Path], surface: Surface) -> Path:
    """등치면 저장 (.npz 스냅샷 또는 .obj).

    Returns:
        저장된 파일 경로
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    suffix = _suffix(path)

    if suffix == ".npz":
        _write_npz(path, surface.to_dict(), _SURFACE_ARRAYS)
    elif suffix == ".obj":
        _write_obj(path, surface)
    else:
        raise ValueError(f"지원하지 않는 등치면 형식: {suffix} (지원: .npz, .obj)")

    logger.info("등치면 저장: %s (정점 %d, 삼각형 %d)", path, surface.n_vertices, surface.n_faces)
    return path


def load_surface(path: Union[str, Path]) -> Surface:
    """.npz 스냅샷에서 등치면 로드."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"파일을 찾을 수 없습니다: {path}")
    if _suffix(path) != ".npz":
        raise ValueError(f"등치면 로드는 .npz만 지원합니다: {path}")

    data = _read_npz(path, _SURFACE_ARRAYS)
    if (data.get("metadata") or {}).get("type") != "Surface":
        raise ValueError(f"등치면 스냅샷이 아닙니다: {path}")
    return Surface.from_dict(data)


def _write_obj(path: Path, surface: Surface) -> None:
    faces = surface.faces.astype(np.int64) + 1  # OBJ는 1부터
    with open(path, "w") as f:
        f.write(f"# {surface.name or 'surface'}\n")
        np.savetxt(f, surface.vertices, fmt="v %.6f %.6f %.6f")
        if surface.normal is not None:
            np.savetxt(f, surface.normal.reshape(-1, 3), fmt="vn %.6f %.6f %.6f")
            np.savetxt(
                f, np.repeat(faces, 2, axis=1),
                fmt="f %d//%d %d//%d %d//%d",
            )
        else:
            np.savetxt(f, faces, fmt="f %d %d %d")

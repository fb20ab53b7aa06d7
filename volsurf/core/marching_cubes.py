"""Marching Cubes 삼각분할 — scikit-image 기반.

한 세대(generation)의 샘플/격자 크기/라벨에 묶인 인스턴스를 만들고,
triangulate()를 반복 호출해 등위값별 메쉬를 격자 좌표로 얻는다.
"""

import logging
from typing import Optional

import numpy as np
from skimage.measure import marching_cubes

logger = logging.getLogger(__name__)


def _empty_mesh(with_normals: bool, with_owner: bool) -> dict:
    """빈 메쉬 딕셔너리."""
    sd = {
        "position": np.zeros(0, dtype=np.float32),
        "index": np.zeros(0, dtype=np.uint32),
    }
    if with_normals:
        sd["normal"] = np.zeros(0, dtype=np.float32)
    if with_owner:
        sd["owner"] = np.zeros(0, dtype=np.int32)
    return sd


class MarchingCubes:
    """샘플 격자에 대한 등치면 삼각분할.

    격자는 (nz, ny, nx) 배열로 본다. 출력 좌표는 (x, y, z) 격자 좌표.
    """

    def __init__(self, samples: np.ndarray, nx: int, ny: int, nz: int,
                 sample_owner: Optional[np.ndarray] = None):
        self.nx, self.ny, self.nz = nx, ny, nz
        self.volume = np.asarray(samples).reshape(nz, ny, nx)
        self.owner = None
        if sample_owner is not None:
            self.owner = np.asarray(sample_owner).reshape(nz, ny, nx)

    def _clip_box(self, box) -> tuple:
        """격자 박스 [[x0,y0,z0],[x1,y1,z1]]를 격자 범위로 자른 슬라이스와 오프셋."""
        upper = np.array([self.nx - 1, self.ny - 1, self.nz - 1])
        if box is None:
            lo = np.zeros(3, dtype=np.int64)
            hi = upper
        else:
            b = np.asarray(box, dtype=np.int64).reshape(2, 3)
            lo = np.clip(np.minimum(b[0], b[1]), 0, upper)
            hi = np.clip(np.maximum(b[0], b[1]), 0, upper)
        slices = (
            slice(lo[2], hi[2] + 1),
            slice(lo[1], hi[1] + 1),
            slice(lo[0], hi[0] + 1),
        )
        return slices, lo

    def triangulate(self, isolevel: float, smooth_hint: bool = False, box=None) -> dict:
        """등위값 isolevel의 등치면 추출.

        Args:
            isolevel: 등위값
            smooth_hint: 이후 스무딩 예정 — 퇴화 삼각형 제거, 법선 생략
            box: 격자 공간 정수 박스 (2, 3) 또는 None (전체 격자)

        Returns:
            {"position", "index", "normal"?, "owner"?} 평탄 배열, 격자 좌표
        """
        with_normals = not smooth_hint
        with_owner = self.owner is not None

        slices, offset = self._clip_box(box)
        block = self.volume[slices]

        # 축마다 최소 2 샘플이 있어야 큐브가 존재
        if min(block.shape) < 2:
            return _empty_mesh(with_normals, with_owner)

        lo, hi = float(block.min()), float(block.max())
        if not (lo <= isolevel <= hi) or lo == hi:
            return _empty_mesh(with_normals, with_owner)

        try:
            verts, faces, normals, _ = marching_cubes(
                block, level=isolevel, allow_degenerate=not smooth_hint,
            )
        except RuntimeError as e:
            if "No surface found" in str(e):
                return _empty_mesh(with_normals, with_owner)
            raise

        # (z, y, x) → (x, y, z); 축 반전으로 뒤집힌 감김 방향 복원
        verts = verts[:, ::-1] + offset
        faces = faces[:, ::-1]

        sd = {
            "position": np.ascontiguousarray(verts, dtype=np.float32).reshape(-1),
            "index": np.ascontiguousarray(faces, dtype=np.uint32).reshape(-1),
        }
        if with_normals:
            sd["normal"] = np.ascontiguousarray(normals[:, ::-1], dtype=np.float32).reshape(-1)
        if with_owner:
            sd["owner"] = self._vertex_owner(verts)

        logger.debug(
            "triangulate: level=%.4g, box=%s, 정점 %d, 삼각형 %d",
            isolevel, None if box is None else np.asarray(box).tolist(),
            len(verts), len(faces),
        )
        return sd

    def _vertex_owner(self, verts: np.ndarray) -> np.ndarray:
        """정점별 라벨 — 가장 가까운 격자 샘플의 라벨."""
        idx = np.rint(verts).astype(np.int64)
        x = np.clip(idx[:, 0], 0, self.nx - 1)
        y = np.clip(idx[:, 1], 0, self.ny - 1)
        z = np.clip(idx[:, 2], 0, self.nz - 1)
        return self.owner[z, y, x].astype(np.int32)

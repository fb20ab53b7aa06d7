"""격자 → 월드 좌표 변환 (grid space → world space).

4x4 아핀 행렬과 그로부터 파생되는 법선 행렬, 역행렬, 월드 바운딩 박스를
항상 함께 갱신한다. 행렬은 열 벡터 규약: world = T @ [x, y, z, 1].
"""

import logging
from typing import Sequence

import numpy as np

logger = logging.getLogger(__name__)


def matrix_to_array(m: np.ndarray) -> list:
    """행렬 → 열 우선(column-major) 평탄 리스트."""
    return [float(v) for v in np.asarray(m, dtype=np.float64).T.reshape(-1)]


def array_to_matrix(values: Sequence[float], size: int = 4) -> np.ndarray:
    """열 우선 평탄 시퀀스 → size x size 행렬."""
    arr = np.asarray(values, dtype=np.float64).reshape(-1)
    if arr.size != size * size:
        raise ValueError(f"{size}x{size} 행렬에는 {size * size}개 값이 필요합니다 (받은 값: {arr.size})")
    return arr.reshape(size, size).T.copy()


def normal_matrix_from(transform: np.ndarray) -> np.ndarray:
    """법선 변환 행렬 (선형부의 여인수 행렬 = 수반행렬의 전치).

    선형부 열 벡터 c0, c1, c2에 대해
        N = [c1 x c2 | c2 x c0 | c0 x c1]
    비균등/비직교 스케일에서도 법선이 면에 수직으로 유지된다.
    """
    c0, c1, c2 = transform[:3, 0], transform[:3, 1], transform[:3, 2]
    return np.column_stack([np.cross(c1, c2), np.cross(c2, c0), np.cross(c0, c1)])


def _transform_box(box_min: np.ndarray, box_max: np.ndarray, m: np.ndarray) -> np.ndarray:
    """AABB의 8개 모서리를 변환한 뒤 다시 AABB로 감싼다. 반환: (2, 3)."""
    corners = np.array([
        [x, y, z]
        for x in (box_min[0], box_max[0])
        for y in (box_min[1], box_max[1])
        for z in (box_min[2], box_max[2])
    ], dtype=np.float64)
    world = corners @ m[:3, :3].T + m[:3, 3]
    return np.stack([world.min(axis=0), world.max(axis=0)])


class CoordinateFrame:
    """격자 좌표계와 월드 좌표계 사이의 변환.

    Attributes:
        transform: (4, 4) 격자 → 월드 아핀 행렬
        normal_transform: (3, 3) 법선 변환 행렬
        inverse_transform: (4, 4) 월드 → 격자
        bounding_box: (2, 3) 격자 모서리 8점 변환 후 월드 AABB [min, max]
        center: (3,) 바운딩 박스 중심
        generation: transform 또는 격자 크기가 바뀔 때마다 증가
    """

    def __init__(self, nx: int = 1, ny: int = 1, nz: int = 1):
        self.nx, self.ny, self.nz = nx, ny, nz
        self.generation = 0
        self.transform = np.eye(4)
        self.normal_transform = np.eye(3)
        self.inverse_transform = np.eye(4)
        self.bounding_box = np.zeros((2, 3))
        self.center = np.zeros(3)
        self._rebuild()

    def set_transform(self, m) -> None:
        """변환 행렬 설정 후 모든 파생 값 재계산.

        Args:
            m: (4, 4) 행렬 또는 열 우선 16개 값
        """
        arr = np.asarray(m, dtype=np.float64)
        self.transform = array_to_matrix(arr) if arr.shape != (4, 4) else arr.copy()
        self._rebuild()

    def set_extent(self, nx: int, ny: int, nz: int) -> None:
        """격자 크기 변경 — 바운딩 박스/중심 재계산."""
        self.nx, self.ny, self.nz = nx, ny, nz
        self._rebuild()

    def restore(self, transform, normal_transform, inverse_transform, center, bounding_box) -> None:
        """직렬화된 파생 값을 그대로 채택 (역직렬화 경로)."""
        self.transform = array_to_matrix(transform)
        self.normal_transform = array_to_matrix(normal_transform, size=3)
        self.inverse_transform = array_to_matrix(inverse_transform)
        self.center = np.asarray(center, dtype=np.float64).reshape(3).copy()
        self.bounding_box = np.asarray(bounding_box, dtype=np.float64).reshape(2, 3).copy()
        self.generation += 1

    def _rebuild(self) -> None:
        m = self.transform

        corner_max = np.array([self.nx - 1, self.ny - 1, self.nz - 1], dtype=np.float64)
        self.bounding_box = _transform_box(np.zeros(3), corner_max, m)
        self.center = self.bounding_box.mean(axis=0)

        self.normal_transform = normal_matrix_from(m)

        try:
            self.inverse_transform = np.linalg.inv(m)
        except np.linalg.LinAlgError:
            logger.warning("특이(singular) 변환 행렬 — 의사역행렬(pinv)로 대체")
            self.inverse_transform = np.linalg.pinv(m)

        self.generation += 1

    # ── 좌표 변환 ──

    def grid_box_from_world(self, center, size: float) -> np.ndarray:
        """월드 공간 질의(중심 ± size)를 격자 공간 정수 박스로 변환.

        Args:
            center: 월드 좌표 중심 (3,)
            size: 반-크기 (스칼라)

        Returns:
            (2, 3) int 배열 [[x0, y0, z0], [x1, y1, z1]]
        """
        c = np.asarray(center, dtype=np.float64).reshape(3)
        box = _transform_box(c - size, c + size, self.inverse_transform)
        return np.round(box).astype(np.int64)

    def apply_to_points(self, position: np.ndarray) -> np.ndarray:
        """평탄 xyz 배열을 격자 → 월드로 제자리 변환."""
        v = position.reshape(-1, 3)
        v[:] = v @ self.transform[:3, :3].T + self.transform[:3, 3]
        return position

    def apply_to_normals(self, normal: np.ndarray) -> np.ndarray:
        """평탄 법선 배열에 normal_transform 제자리 적용 (정규화하지 않음)."""
        v = normal.reshape(-1, 3)
        v[:] = v @ self.normal_transform.T
        return normal

    def world_to_grid(self, points) -> np.ndarray:
        """월드 좌표 (N, 3) → 격자 좌표 (N, 3) (실수)."""
        p = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return p @ self.inverse_transform[:3, :3].T + self.inverse_transform[:3, 3]

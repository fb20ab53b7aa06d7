"""등치면 추출 — ScalarField + CoordinateFrame → 월드 좌표 Surface.

절차:
  1. 등위값 기본값 (mean + 2·rms) 결정
  2. (선택) 월드 영역 → 격자 박스
  3. Marching Cubes 삼각분할 (격자 좌표)
  4. (선택) 라플라시안 스무딩 + 정점 법선 재계산
  5. 격자 → 월드 변환 (정점: transform, 법선: normal_transform)
"""

import logging
import math
import threading
from numbers import Real
from typing import Optional

from ..config import SmoothingConfig
from .field import ScalarField
from .frame import CoordinateFrame
from .marching_cubes import MarchingCubes
from .mesh_utils import compute_vertex_normals, laplacian_smooth
from .surface import Surface

logger = logging.getLogger(__name__)


def is_finite_number(value) -> bool:
    """유한한 실수 여부 (bool 제외)."""
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


class SurfaceExtractor:
    """단일 볼륨에 대한 등치면 추출기.

    MarchingCubes 인스턴스는 첫 추출 때 만들어 같은 데이터 세대 동안 재사용하고,
    ScalarField.generation이 바뀌면 다시 만든다.
    """

    def __init__(
        self,
        field: ScalarField,
        frame: CoordinateFrame,
        smoothing: Optional[SmoothingConfig] = None,
        default_sigma: float = 2.0,
    ):
        self.field = field
        self.frame = frame
        self.smoothing = smoothing or SmoothingConfig()
        self.default_sigma = default_sigma
        self._mc: Optional[MarchingCubes] = None
        self._mc_generation = -1
        self._lock = threading.Lock()

    def resolve_isolevel(self, isolevel) -> float:
        """유한한 수가 아니면 value_for_sigma(default_sigma)."""
        if is_finite_number(isolevel):
            return float(isolevel)
        return self.field.value_for_sigma(self.default_sigma)

    def reset(self) -> None:
        """캐시된 삼각분할 인스턴스 폐기."""
        self._mc = None
        self._mc_generation = -1

    def _triangulator(self) -> MarchingCubes:
        f = self.field
        if self._mc is None or self._mc_generation != f.generation:
            logger.debug("MarchingCubes 생성 (generation=%d)", f.generation)
            self._mc = MarchingCubes(f.samples, f.nx, f.ny, f.nz, f.sample_owner)
            self._mc_generation = f.generation
        return self._mc

    def extract(self, isolevel=None, smooth=0, center=None, size=None) -> Surface:
        """등치면 추출.

        Args:
            isolevel: 등위값 (유한한 수가 아니면 mean + 2·rms)
            smooth: 스무딩 반복 횟수 (0이면 스무딩 없음)
            center: 월드 좌표 영역 중심 (size와 함께 지정 시 영역 제한)
            size: 영역 반-크기

        Returns:
            월드 좌표 Surface (info: isolevel, smooth)
        """
        isolevel = self.resolve_isolevel(isolevel)
        smooth = int(smooth or 0)

        with self._lock:
            mc = self._triangulator()

            box = None
            if center is not None and size:
                box = self.frame.grid_box_from_world(center, size)

            if smooth > 0:
                sd = mc.triangulate(isolevel, True, box)
                laplacian_smooth(
                    sd["position"], sd["index"], smooth,
                    volume_preserving=self.smoothing.volume_preserving,
                    lambda_factor=self.smoothing.lambda_factor,
                    mu_factor=self.smoothing.mu_factor,
                )
                sd["normal"] = compute_vertex_normals(sd["position"], sd["index"])
            else:
                sd = mc.triangulate(isolevel, False, box)

            self.frame.apply_to_points(sd["position"])
            if sd.get("normal") is not None:
                self.frame.apply_to_normals(sd["normal"])

        return Surface.from_mesh_data(
            sd, info={"isolevel": isolevel, "smooth": smooth}
        )

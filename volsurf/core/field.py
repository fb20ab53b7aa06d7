"""스칼라 필드 — 원시 샘플 배열과 지연 계산 통계 캐시."""

import logging
import math
from typing import Optional, Tuple

import numpy as np

from .errors import InvalidDimensions

logger = logging.getLogger(__name__)


def _as_samples(samples) -> np.ndarray:
    """샘플을 1차원 연속 배열로 변환.

    부동소수점 dtype은 그대로 유지 (값이 비트 단위로 보존되어야 함).
    """
    if samples is None:
        return np.zeros(1, dtype=np.float32)
    arr = np.ascontiguousarray(samples).reshape(-1)
    if not np.issubdtype(arr.dtype, np.floating):
        arr = arr.astype(np.float32)
    return arr


def _as_owner(sample_owner, n: int) -> Optional[np.ndarray]:
    """샘플별 라벨을 int32 배열로 변환 (길이 검증 포함)."""
    if sample_owner is None:
        return None
    owner = np.ascontiguousarray(sample_owner, dtype=np.int32).reshape(-1)
    if owner.size != n:
        raise ValueError(f"sample_owner 길이 {owner.size}가 샘플 수 {n}와 다릅니다")
    return owner


class ScalarField:
    """nx×ny×nz 격자 위의 스칼라 샘플.

    평탄 인덱스는 x가 가장 빠르게 변한다: index = (z * ny + y) * nx + x.
    min/max/mean/rms는 첫 호출 시 한 번 선형 스캔으로 계산 후 캐시된다.
    캐시는 set_samples()에서만 무효화된다 (필터링은 샘플을 읽기만 함).
    """

    def __init__(
        self,
        samples=None,
        nx: Optional[int] = None,
        ny: Optional[int] = None,
        nz: Optional[int] = None,
        sample_owner=None,
        strict: bool = True,
    ):
        self.strict = strict
        self.generation = 0
        self.samples: np.ndarray = np.zeros(1, dtype=np.float32)
        self.sample_owner: Optional[np.ndarray] = None
        self.nx = self.ny = self.nz = 1
        self._stats: dict = {}
        self.set_samples(samples, nx, ny, nz, sample_owner)

    def set_samples(self, samples, nx=None, ny=None, nz=None, sample_owner=None):
        """원시 데이터 교체.

        Args:
            samples: 샘플 값 시퀀스 (길이 nx·ny·nz)
            nx, ny, nz: 격자 크기 (없으면 1)
            sample_owner: 샘플별 정수 라벨 (선택)

        Raises:
            InvalidDimensions: strict 모드에서 nx·ny·nz != len(samples)
        """
        samples = _as_samples(samples)
        nx, ny, nz = int(nx or 1), int(ny or 1), int(nz or 1)

        if nx * ny * nz != samples.size:
            if self.strict:
                raise InvalidDimensions(nx, ny, nz, samples.size)
            logger.warning(
                "격자 %dx%dx%d 와 샘플 수 %d 불일치 (strict=False, 계속 진행)",
                nx, ny, nz, samples.size,
            )

        owner = _as_owner(sample_owner, samples.size)

        self.samples = samples
        self.sample_owner = owner
        self.nx, self.ny, self.nz = nx, ny, nz
        self._invalidate()

    def set_sample_owner(self, sample_owner):
        """샘플별 라벨 교체. 통계 캐시는 유지."""
        self.sample_owner = _as_owner(sample_owner, self.samples.size)
        # 삼각분할 인스턴스가 라벨에 묶여 있으므로 세대 증가
        self.generation += 1

    def _invalidate(self):
        """유일한 변경 진입점 — 세대 증가 + 통계 캐시 삭제."""
        self.generation += 1
        self._stats.clear()

    @property
    def n_samples(self) -> int:
        return int(self.samples.size)

    @property
    def shape(self) -> Tuple[int, int, int]:
        """3D 배열 형상 (nz, ny, nx)."""
        return self.nz, self.ny, self.nx

    def as_grid(self) -> np.ndarray:
        """읽기 전용 (nz, ny, nx) 뷰."""
        grid = self.samples.reshape(self.shape)
        grid.flags.writeable = False
        return grid

    # ── 통계 ──

    def _float64(self) -> np.ndarray:
        return self.samples.astype(np.float64, copy=False)

    def get_min(self) -> float:
        if "min" not in self._stats:
            self._stats["min"] = (
                float(np.min(self.samples)) if self.samples.size else math.inf
            )
        return self._stats["min"]

    def get_max(self) -> float:
        if "max" not in self._stats:
            self._stats["max"] = (
                float(np.max(self.samples)) if self.samples.size else -math.inf
            )
        return self._stats["max"]

    def get_mean(self) -> float:
        if "mean" not in self._stats:
            n = self.samples.size
            self._stats["mean"] = (
                float(np.sum(self._float64()) / n) if n else math.nan
            )
        return self._stats["mean"]

    def get_rms(self) -> float:
        """제곱평균제곱근: sqrt(sum(v_i^2) / n)."""
        if "rms" not in self._stats:
            n = self.samples.size
            if n:
                s = self._float64()
                self._stats["rms"] = math.sqrt(float(np.dot(s, s)) / n)
            else:
                self._stats["rms"] = math.nan
        return self._stats["rms"]

    def value_for_sigma(self, sigma: float = 2.0) -> float:
        """mean + sigma * rms. 기본 등위값 선택에 사용."""
        return self.get_mean() + sigma * self.get_rms()

    def sigma_for_value(self, value: float = 0.0) -> float:
        """(value - mean) / rms.

        rms가 0이면 value == mean일 때 nan, 아니면 부호에 맞는 무한대.
        """
        mean = self.get_mean()
        rms = self.get_rms()
        if rms == 0:
            diff = value - mean
            return math.nan if diff == 0 else math.copysign(math.inf, diff)
        return (value - mean) / rms

"""값 범위 필터링 뷰 — 재사용 버퍼 위의 (위치, 값) 부분집합.

apply() 결과는 미리 할당된 버퍼의 앞부분을 가리키는 뷰로 노출된다.
다음 apply() 호출이 버퍼를 덮어쓰므로 이전 뷰는 무효가 된다
(단일 소유자, 동시 호출 금지).
"""

import logging
import math
from numbers import Real
from typing import Callable, Optional

import numpy as np

from .field import ScalarField
from .frame import CoordinateFrame

logger = logging.getLogger(__name__)


class _FilterArena:
    """최악의 경우(모든 샘플 통과) 크기로 한 번 할당하는 버퍼 묶음."""

    def __init__(self, n: int, dtype):
        self.positions = np.empty((n, 3), dtype=np.float32)
        self.values = np.empty(n, dtype=dtype)
        self.mask = np.empty(n, dtype=bool)
        self.scratch = np.empty(n, dtype=bool)

    @property
    def capacity(self) -> int:
        return self.values.size


class FilterView:
    """값 범위로 필터링된 샘플과 그 월드 위치.

    positions/values는 마지막 필터 이후 데이터나 변환이 바뀌었으면
    읽을 때 같은 인자로 다시 계산된다.

    Attributes:
        positions: (k, 3) 현재 통과한 샘플의 월드 좌표
        values: (k,) 현재 통과한 샘플 값
    """

    def __init__(
        self,
        field: ScalarField,
        frame: CoordinateFrame,
        default_min: Optional[Callable[[], Optional[float]]] = None,
    ):
        self.field = field
        self.frame = frame
        self.default_min = default_min
        self._positions: Optional[np.ndarray] = None
        self._values: Optional[np.ndarray] = None
        self._grid_positions: Optional[np.ndarray] = None
        self._grid_key = None
        self._arena: Optional[_FilterArena] = None
        self._applied = None
        self._applied_key = None

    def invalidate(self) -> None:
        """데이터 교체 시 위치 캐시, 버퍼, 마지막 필터 기록 폐기."""
        self._positions = None
        self._values = None
        self._grid_positions = None
        self._grid_key = None
        self._arena = None
        self._applied = None
        self._applied_key = None

    def _current_key(self):
        return (self.field.generation, self.frame.generation)

    def _refresh(self) -> None:
        if self._applied is not None and self._applied_key != self._current_key():
            logger.debug("필터 재적용 (데이터 또는 변환 변경): %s", self._applied)
            self.apply(*self._applied)

    @property
    def positions(self) -> Optional[np.ndarray]:
        self._refresh()
        return self._positions

    @property
    def values(self) -> Optional[np.ndarray]:
        self._refresh()
        return self._values

    @property
    def retained_count(self) -> int:
        values = self.values
        return 0 if values is None else int(values.size)

    @property
    def applied(self):
        """마지막으로 적용된 (min_value, max_value, outside)."""
        return self._applied

    def grid_positions(self) -> np.ndarray:
        """모든 샘플의 월드 좌표 (n, 3), 평탄 인덱스 순서.

        x가 가장 빠르게 변하는 z/y/x 순회 후 transform 적용. 데이터 또는
        변환이 바뀔 때까지 캐시된다.
        """
        key = self._current_key()
        if self._grid_positions is None or self._grid_key != key:
            f = self.field
            idx = np.indices(f.shape, dtype=np.float32)  # (3, nz, ny, nx)
            position = np.empty((idx[0].size, 3), dtype=np.float32)
            position[:, 0] = idx[2].reshape(-1)
            position[:, 1] = idx[1].reshape(-1)
            position[:, 2] = idx[0].reshape(-1)
            self.frame.apply_to_points(position)
            self._grid_positions = position
            self._grid_key = key
            logger.debug("격자 위치 생성: %d 샘플", len(position))
        return self._grid_positions

    def _resolve_min(self, min_value) -> float:
        if isinstance(min_value, Real) and not math.isnan(min_value):
            return float(min_value)
        if self.default_min is not None:
            provided = self.default_min()
            if provided is not None:
                return float(provided)
        return -math.inf

    def apply(self, min_value=None, max_value=None, outside: bool = False) -> bool:
        """값 범위 필터 적용.

        inside:  min <= v <= max
        outside: v < min 또는 v > max

        Args:
            min_value: 최소값 (수가 아니면 헤더 기본값 또는 -inf)
            max_value: 최대값 (None이면 +inf)
            outside: 범위 밖을 남길지 여부

        Returns:
            재계산했으면 True, 마지막 필터와 같아 건너뛰었으면 False
        """
        min_value = self._resolve_min(min_value)
        max_value = math.inf if max_value is None else float(max_value)
        outside = bool(outside)

        triple = (min_value, max_value, outside)
        key = self._current_key()
        if triple == self._applied and key == self._applied_key:
            return False

        positions = self.grid_positions()
        data = self.field.samples

        if min_value == -math.inf and max_value == math.inf:
            # 필터 없음: 원본을 그대로 노출 (복사 없음)
            self._positions = positions
            self._values = data
        else:
            arena = self._arena
            if arena is None or arena.capacity != data.size or arena.values.dtype != data.dtype:
                arena = self._arena = _FilterArena(data.size, data.dtype)

            mask, scratch = arena.mask, arena.scratch
            if outside:
                np.less(data, min_value, out=mask)
                np.greater(data, max_value, out=scratch)
                np.logical_or(mask, scratch, out=mask)
            else:
                np.greater_equal(data, min_value, out=mask)
                np.less_equal(data, max_value, out=scratch)
                np.logical_and(mask, scratch, out=mask)

            k = int(np.count_nonzero(mask))
            np.compress(mask, positions, axis=0, out=arena.positions[:k])
            np.compress(mask, data, out=arena.values[:k])

            self._positions = arena.positions[:k]
            self._values = arena.values[:k]

        self._applied = triple
        self._applied_key = key
        return True

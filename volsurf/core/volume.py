"""Volume — 스칼라 필드 + 좌표계 + 등치면 추출 + 필터 + 오프로드.

데이터 교체(set_data)가 모든 파생 캐시와 워커 세션을 초기화하는 유일한
진입점이다. 큰 볼륨(> registry.max_samples)은 전역 레지스트리에 등록하지 않는다.
"""

import logging
from concurrent.futures import Future
from typing import Callable, Optional

import numpy as np

from ..config import VolumeConfig
from .extract import SurfaceExtractor
from .field import ScalarField
from .filter_view import FilterView
from .frame import CoordinateFrame, matrix_to_array
from .registry import VolumeRegistry
from .surface import Surface

logger = logging.getLogger(__name__)


class Volume:
    """nx×ny×nz 격자 위의 3D 스칼라 볼륨.

    Attributes:
        name, path: 식별 정보
        header: 파일 형식별 메타데이터 (선택, 예: DMEAN/ARMS)
        field: ScalarField
        frame: CoordinateFrame
        extractor: SurfaceExtractor
        filter_view: FilterView
    """

    def __init__(
        self,
        name: str = "",
        path: str = "",
        samples=None,
        nx: Optional[int] = None,
        ny: Optional[int] = None,
        nz: Optional[int] = None,
        sample_owner=None,
        *,
        header: Optional[dict] = None,
        registry: Optional[VolumeRegistry] = None,
        config: Optional[VolumeConfig] = None,
    ):
        from ..offload.coordinator import OffloadCoordinator

        self.name = name
        self.path = path
        self.header = dict(header) if header else None
        self.config = config or VolumeConfig.default()
        self.registry = registry
        self._registered = False

        self.field = ScalarField(strict=self.config.strict_dimensions)
        self.frame = CoordinateFrame()
        self.extractor = SurfaceExtractor(
            self.field, self.frame,
            smoothing=self.config.smoothing,
            default_sigma=self.config.statistics.default_sigma,
        )
        self.filter_view = FilterView(self.field, self.frame, default_min=self._header_default_min)
        self.offload = OffloadCoordinator(self, self.config.offload)

        self.set_data(samples, nx, ny, nz, sample_owner)

    # ── 데이터 ──

    def set_data(self, samples, nx=None, ny=None, nz=None, sample_owner=None) -> None:
        """원시 데이터 교체.

        통계, 삼각분할 인스턴스, 격자 위치, 필터 뷰를 모두 무효화하고
        워커 세션을 종료한 뒤 레지스트리에 알린다.

        Raises:
            InvalidDimensions: strict 모드에서 nx·ny·nz != len(samples)
        """
        self.field.set_samples(samples, nx, ny, nz, sample_owner)
        self.frame.set_extent(self.field.nx, self.field.ny, self.field.nz)
        self.extractor.reset()
        self.filter_view.invalidate()
        self.offload.reset()
        self._notify_registry()

    def set_sample_owner(self, sample_owner) -> None:
        """샘플별 라벨 교체 (삼각분할 인스턴스는 다음 추출 때 재생성)."""
        self.field.set_sample_owner(sample_owner)
        self.offload.reset()

    def _notify_registry(self) -> None:
        max_samples = self.config.registry.max_samples
        n = self.field.n_samples
        if n <= max_samples:
            if self.registry is None:
                return
            if self._registered:
                self.registry.update(self, fresh=True)
            else:
                self.registry.register(self)
                self._registered = True
        else:
            logger.warning(
                "볼륨이 너무 큼 (%d 샘플 > %d) — 레지스트리에 등록하지 않음", n, max_samples
            )
            if self.registry is not None and self._registered:
                self.registry.unregister(self)
                self._registered = False

    @property
    def gid_count(self) -> int:
        """레지스트리에서 차지하는 gid 수 (샘플당 1개)."""
        return self.field.n_samples

    @property
    def nx(self) -> int:
        return self.field.nx

    @property
    def ny(self) -> int:
        return self.field.ny

    @property
    def nz(self) -> int:
        return self.field.nz

    @property
    def samples(self) -> np.ndarray:
        """원본(필터 전) 샘플."""
        return self.field.samples

    @property
    def sample_owner(self) -> Optional[np.ndarray]:
        return self.field.sample_owner

    @property
    def data(self) -> np.ndarray:
        """현재 필터 뷰의 값 (필터 적용 전이면 원본 샘플)."""
        if self.filter_view.values is None:
            return self.field.samples
        return self.filter_view.values

    @property
    def data_position(self) -> Optional[np.ndarray]:
        return self.filter_view.positions

    # ── 좌표계 ──

    def set_transform(self, matrix) -> None:
        """격자 → 월드 변환 교체.

        워커는 스냅샷에 담긴 변환으로 추출하므로 워커 세션도 종료한다.
        필터 뷰 위치는 다음 조회 때 새 변환으로 다시 계산된다.
        """
        self.frame.set_transform(matrix)
        self.offload.reset()

    @property
    def transform(self) -> np.ndarray:
        return self.frame.transform

    @property
    def normal_transform(self) -> np.ndarray:
        return self.frame.normal_transform

    @property
    def inverse_transform(self) -> np.ndarray:
        return self.frame.inverse_transform

    @property
    def bounding_box(self) -> np.ndarray:
        return self.frame.bounding_box

    @property
    def center(self) -> np.ndarray:
        return self.frame.center

    def get_box(self, center, size: float) -> np.ndarray:
        """월드 질의(중심 ± size) → 격자 정수 박스 (2, 3)."""
        return self.frame.grid_box_from_world(center, size)

    # ── 통계 ──

    def get_data_min(self) -> float:
        return self.field.get_min()

    def get_data_max(self) -> float:
        return self.field.get_max()

    def get_data_mean(self) -> float:
        return self.field.get_mean()

    def get_data_rms(self) -> float:
        return self.field.get_rms()

    def get_value_for_sigma(self, sigma: float = 2.0) -> float:
        return self.field.value_for_sigma(sigma)

    def get_sigma_for_value(self, value: float = 0.0) -> float:
        return self.field.sigma_for_value(value)

    # ── 등치면 ──

    def get_surface(self, isolevel=None, smooth=0, center=None, size=None) -> Surface:
        """등치면 동기 추출 (호출 스레드에서 실행)."""
        surface = self.extractor.extract(isolevel, smooth, center, size)
        surface.name = self.name
        surface.path = self.path
        return surface

    def get_surface_async(
        self,
        isolevel=None,
        smooth=0,
        center=None,
        size=None,
        callback: Optional[Callable[[Surface], None]] = None,
        error_callback: Optional[Callable[[BaseException], None]] = None,
    ) -> "Future[Surface]":
        """등치면 비동기 추출 (워커 풀, 실패 시 동기 폴백)."""
        return self.offload.extract_async(
            isolevel, smooth, center, size,
            callback=callback, error_callback=error_callback,
        )

    # ── 필터 ──

    def _header_default_min(self) -> Optional[float]:
        h = self.header
        if h and "DMEAN" in h and "ARMS" in h:
            return float(h["DMEAN"]) + 2.0 * float(h["ARMS"])
        return None

    def filter_data(self, min_value=None, max_value=None, outside: bool = False) -> bool:
        """값 범위 필터 적용. 결과는 data / data_position으로 노출."""
        return self.filter_view.apply(min_value, max_value, outside)

    def get_data_position(self) -> np.ndarray:
        """현재 필터 뷰의 월드 위치 (필터 전이면 모든 격자 위치)."""
        if self.filter_view.positions is None:
            return self.filter_view.grid_positions()
        return self.filter_view.positions

    def get_data_size(self, size="value", scale: float = 1.0) -> np.ndarray:
        """표시용 크기 배열 (현재 필터 뷰 기준).

        Args:
            size: "value" | "abs-value" | "value-min" | "deviation" | 숫자(균일 크기)
            scale: 배율
        """
        data = self.data
        if size in ("value", "deviation"):
            array = np.array(data, dtype=np.float32)
        elif size == "abs-value":
            array = np.abs(data).astype(np.float32)
        elif size == "value-min":
            array = (np.asarray(data, dtype=np.float64) - self.get_data_min()).astype(np.float32)
        else:
            array = np.full(data.size, float(size), dtype=np.float32)

        if scale != 1.0:
            array *= scale
        return array

    # ── 직렬화 ──

    def clone(self) -> "Volume":
        """같은 샘플/변환/헤더를 공유하는 새 볼륨 (레지스트리 공유)."""
        vol = Volume(
            self.name, self.path, self.field.samples,
            self.nx, self.ny, self.nz, self.field.sample_owner,
            header=self.header, registry=self.registry, config=self.config,
        )
        vol.set_transform(self.frame.transform)
        return vol

    def to_dict(self) -> dict:
        """직렬화 스냅샷 (워커 전송 및 저장 형식)."""
        output = {
            "metadata": {
                "version": 0.1,
                "type": "Volume",
                "generator": "VolumeExporter",
            },
            "name": self.name,
            "path": self.path,
            "samples": self.field.samples,
            "nx": self.nx,
            "ny": self.ny,
            "nz": self.nz,
            "sample_owner": self.field.sample_owner,
            "transform": matrix_to_array(self.frame.transform),
            "normal_transform": matrix_to_array(self.frame.normal_transform),
            "inverse_transform": matrix_to_array(self.frame.inverse_transform),
            "center": [float(v) for v in self.frame.center],
            "bounding_box": {
                "min": [float(v) for v in self.frame.bounding_box[0]],
                "max": [float(v) for v in self.frame.bounding_box[1]],
            },
        }
        if self.header:
            output["header"] = dict(self.header)
        return output

    def load_dict(self, data: dict) -> "Volume":
        """스냅샷으로 이 볼륨을 교체."""
        self.name = data.get("name", "")
        self.path = data.get("path", "")
        self.set_data(
            data["samples"], data["nx"], data["ny"], data["nz"], data.get("sample_owner"),
        )
        bb = data["bounding_box"]
        self.frame.restore(
            data["transform"],
            data["normal_transform"],
            data["inverse_transform"],
            data["center"],
            [bb["min"], bb["max"]],
        )
        self.header = dict(data["header"]) if data.get("header") else None
        return self

    @classmethod
    def from_dict(cls, data: dict, *, registry: Optional[VolumeRegistry] = None,
                  config: Optional[VolumeConfig] = None) -> "Volume":
        return cls(registry=registry, config=config).load_dict(data)

    def get_transferable(self) -> list:
        """전송 시 소유권 이동 대상 버퍼 목록."""
        buffers = [self.field.samples]
        if self.field.sample_owner is not None:
            buffers.append(self.field.sample_owner)
        return buffers

    def dispose(self) -> None:
        """워커 풀 종료 + 레지스트리 해제."""
        self.offload.terminate()
        if self.registry is not None and self._registered:
            self.registry.unregister(self)
            self._registered = False

    def __enter__(self) -> "Volume":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def __repr__(self) -> str:
        return f"Volume(name={self.name!r}, shape=({self.nx}, {self.ny}, {self.nz}))"

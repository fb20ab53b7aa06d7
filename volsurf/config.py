"""볼륨 설정 — Pydantic 모델 + TOML 로드."""

import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


class StatisticsConfig(BaseModel):
    """통계/기본 등위값 설정."""

    default_sigma: float = 2.0


class RegistryConfig(BaseModel):
    """전역 레지스트리 등록 설정."""

    # 이 값을 초과하는 샘플 수의 볼륨은 등록하지 않음
    max_samples: int = Field(default=10**7, ge=0)


class OffloadConfig(BaseModel):
    """백그라운드 워커 오프로드 설정."""

    enabled: bool = True
    pool_size: int = Field(default=2, ge=1)
    start_method: Literal["spawn", "fork", "forkserver"] = "spawn"


class SmoothingConfig(BaseModel):
    """라플라시안 스무딩 설정."""

    volume_preserving: bool = True
    lambda_factor: float = 0.5
    mu_factor: float = -0.53


class VolumeConfig(BaseModel):
    """최상위 볼륨 설정."""

    strict_dimensions: bool = True
    statistics: StatisticsConfig = Field(default_factory=StatisticsConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    offload: OffloadConfig = Field(default_factory=OffloadConfig)
    smoothing: SmoothingConfig = Field(default_factory=SmoothingConfig)

    @classmethod
    def from_toml(cls, path: str | Path) -> "VolumeConfig":
        """TOML 파일에서 설정 로드.

        Args:
            path: TOML 파일 경로

        Returns:
            VolumeConfig 인스턴스
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"설정 파일을 찾을 수 없습니다: {path}")

        with open(path, "rb") as f:
            data = tomllib.load(f)

        return cls(**data)

    @classmethod
    def default(cls) -> "VolumeConfig":
        """기본 설정 반환."""
        return cls()

"""등치면 결과 메쉬 (Surface)."""

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np


@dataclass
class Surface:
    """삼각형 메쉬 — 평탄 버퍼 + 추출 메타데이터.

    position/normal은 정점당 xyz (월드 좌표), index는 삼각형당 3개 정점 인덱스.
    info에는 {"isolevel", "smooth"}가 들어간다.
    """
    name: str = ""
    path: str = ""
    position: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    index: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.uint32))
    normal: Optional[np.ndarray] = None
    owner: Optional[np.ndarray] = None   # 정점별 라벨 (sample_owner 유래)
    info: dict = field(default_factory=dict)

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=np.float32).reshape(-1)
        self.index = np.asarray(self.index, dtype=np.uint32).reshape(-1)
        if self.normal is not None:
            self.normal = np.asarray(self.normal, dtype=np.float32).reshape(-1)
        if self.owner is not None:
            self.owner = np.asarray(self.owner, dtype=np.int32).reshape(-1)

    @classmethod
    def from_mesh_data(cls, sd: dict, name: str = "", path: str = "",
                       info: Optional[dict] = None) -> "Surface":
        """삼각분할 결과 딕셔너리에서 생성."""
        return cls(
            name=name,
            path=path,
            position=sd["position"],
            index=sd["index"],
            normal=sd.get("normal"),
            owner=sd.get("owner"),
            info=dict(info or {}),
        )

    @property
    def n_vertices(self) -> int:
        return self.position.size // 3

    @property
    def n_faces(self) -> int:
        return self.index.size // 3

    @property
    def vertices(self) -> np.ndarray:
        """(N, 3) 뷰."""
        return self.position.reshape(-1, 3)

    @property
    def faces(self) -> np.ndarray:
        """(M, 3) 뷰."""
        return self.index.reshape(-1, 3)

    def get_bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """축 정렬 바운딩 박스 (min, max). 빈 메쉬는 (+inf, -inf)."""
        if self.n_vertices == 0:
            return np.full(3, np.inf), np.full(3, -np.inf)
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    def to_dict(self) -> dict:
        """직렬화 딕셔너리 (버퍼는 numpy 배열 그대로)."""
        return {
            "metadata": {
                "version": 0.1,
                "type": "Surface",
                "generator": "SurfaceExporter",
            },
            "name": self.name,
            "path": self.path,
            "position": self.position,
            "index": self.index,
            "normal": self.normal,
            "owner": self.owner,
            "info": dict(self.info),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Surface":
        return cls(
            name=data.get("name", ""),
            path=data.get("path", ""),
            position=data["position"],
            index=data["index"],
            normal=data.get("normal"),
            owner=data.get("owner"),
            info=dict(data.get("info") or {}),
        )

    def get_transferable(self) -> list:
        """전송 시 소유권 이동 대상 버퍼 목록."""
        buffers = [self.position, self.index]
        if self.normal is not None:
            buffers.append(self.normal)
        if self.owner is not None:
            buffers.append(self.owner)
        return buffers

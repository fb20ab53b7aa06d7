"""전역 객체 레지스트리 — 객체별 연속 전역 ID(gid) 구간 할당.

볼륨은 샘플마다 gid 하나를 차지한다 (피킹 등에서 gid → (객체, 샘플) 역참조).
코어는 크기 임계값에 따라 register/update/unregister 호출 여부만 결정한다.
"""

import threading
from typing import Optional, Protocol, Tuple, runtime_checkable


@runtime_checkable
class VolumeRegistry(Protocol):
    """볼륨 코어가 호출하는 레지스트리 인터페이스."""

    def register(self, obj) -> None: ...

    def update(self, obj, fresh: bool = False) -> None: ...

    def unregister(self, obj) -> None: ...


class InMemoryRegistry:
    """스레드 안전 인메모리 gid 할당기.

    객체의 gid_count 속성만큼 연속 구간을 할당한다.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ranges: dict[int, Tuple[object, int, int]] = {}  # id(obj) → (obj, start, count)
        self._next_gid = 1  # 0은 "없음"

    def _allocate_locked(self, obj) -> None:
        count = int(getattr(obj, "gid_count", 1))
        self._ranges[id(obj)] = (obj, self._next_gid, count)
        self._next_gid += count

    def register(self, obj) -> None:
        with self._lock:
            if id(obj) not in self._ranges:
                self._allocate_locked(obj)

    def update(self, obj, fresh: bool = False) -> None:
        """객체 크기 변경 반영.

        fresh이고 gid_count가 바뀌었으면 새 구간을 할당한다.
        등록되지 않은 객체는 새로 등록.
        """
        with self._lock:
            entry = self._ranges.get(id(obj))
            if entry is None:
                self._allocate_locked(obj)
                return
            _, _, count = entry
            if fresh and count != int(getattr(obj, "gid_count", 1)):
                self._allocate_locked(obj)

    def unregister(self, obj) -> None:
        with self._lock:
            self._ranges.pop(id(obj), None)

    def get_gid_range(self, obj) -> Optional[Tuple[int, int]]:
        """(start, count) 또는 None."""
        with self._lock:
            entry = self._ranges.get(id(obj))
            return None if entry is None else (entry[1], entry[2])

    def get_by_gid(self, gid: int):
        """gid → (객체, 구간 내 오프셋) 또는 None."""
        with self._lock:
            for obj, start, count in self._ranges.values():
                if start <= gid < start + count:
                    return obj, gid - start
        return None

    def __contains__(self, obj) -> bool:
        with self._lock:
            return id(obj) in self._ranges

    def __len__(self) -> int:
        with self._lock:
            return len(self._ranges)

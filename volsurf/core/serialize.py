"""직렬화 딕셔너리 → 객체 (metadata.type 기준 분기)."""

from .surface import Surface
from .volume import Volume

_TYPES = {
    "Volume": Volume,
    "Surface": Surface,
}


def from_dict(data: dict, **kwargs):
    """to_dict() 결과로부터 Volume 또는 Surface 복원.

    Args:
        data: {"metadata": {"type": ...}, ...}
        **kwargs: Volume.from_dict에 전달 (registry, config)

    Raises:
        ValueError: 알 수 없는 type
    """
    kind = (data.get("metadata") or {}).get("type")
    cls = _TYPES.get(kind)
    if cls is None:
        raise ValueError(
            f"[직렬화 오류] 알 수 없는 객체 type: {kind!r} "
            f"→ 제안: {sorted(_TYPES)} 중 하나여야 합니다"
        )
    if cls is Volume:
        return Volume.from_dict(data, **kwargs)
    return cls.from_dict(data)

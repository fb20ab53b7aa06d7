"""워커 프로세스 측 — 볼륨 재구성 후 등치면 추출.

각 워커 프로세스는 자신만의 Volume을 하나 유지한다. 첫 메시지에 담긴 볼륨
스냅샷으로 재구성하고, 이후 메시지는 파라미터만 받는다. 삼각분할 캐시는
프로세스 경계를 넘지 않고 워커마다 새로 만든다.
"""

import logging
import multiprocessing
import time
from typing import Optional

logger = logging.getLogger(__name__)

# 워커 프로세스 전역 상태
_in_worker = False
_worker_volume = None


def mark_worker_context() -> None:
    """프로세스 풀 initializer — 이 프로세스를 워커로 표시."""
    global _in_worker
    _in_worker = True


def in_worker_context() -> bool:
    """현재 코드가 워커 프로세스 안에서 실행 중인지."""
    return _in_worker


def workers_supported(start_method: str = "spawn") -> bool:
    """이 환경에서 백그라운드 워커 프로세스를 쓸 수 있는지.

    sem_open이 없는 플랫폼은 multiprocessing.synchronize 임포트가 실패한다.
    """
    try:
        import multiprocessing.synchronize  # noqa: F401
        multiprocessing.get_context(start_method)
    except (ImportError, ValueError) as e:
        logger.debug("워커 사용 불가 (%s): %s", start_method, e)
        return False
    return True


def run_surface_task(payload: dict) -> Optional[dict]:
    """워커 작업 — {"volume": 스냅샷 | None, "config": 설정 | None, "params": {...} | None}.

    스냅샷이 오면 부모 볼륨의 설정(스무딩 계수 등)으로 볼륨을 새로 만든다.

    Returns:
        Surface.to_dict() 또는 params가 없으면 None

    Raises:
        WorkerStateError: 스냅샷을 한 번도 받지 못한 워커에 추출 요청이 온 경우
    """
    global _worker_volume
    from ..config import VolumeConfig
    from ..core.errors import WorkerStateError
    from ..core.volume import Volume

    start = time.time()

    snapshot = payload.get("volume")
    if snapshot:
        config = payload.get("config")
        cfg = VolumeConfig.model_validate(config) if config else None
        _worker_volume = Volume.from_dict(snapshot, config=cfg)

    params = payload.get("params")
    if not params:
        return None

    if _worker_volume is None:
        raise WorkerStateError("볼륨 스냅샷 없이 추출 요청을 받았습니다")

    surface = _worker_volume.get_surface(
        params.get("isolevel"),
        params.get("smooth", 0),
        params.get("center"),
        params.get("size"),
    )
    logger.debug("WORKER surf: %.3f초, 삼각형 %d", time.time() - start, surface.n_faces)
    return surface.to_dict()

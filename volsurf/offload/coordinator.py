"""등치면 추출 오프로드 — 워커 디스패치와 동기 폴백.

호출자 계약: 요청마다 정확히 한 번, Surface 또는 명시적 추출 오류가 전달된다.
워커 전송 오류는 호출자에게 오류로 전달되지 않고 동기 추출로 대체된다.
"""

import logging
import threading
import weakref
from concurrent.futures import Future
from typing import Callable, Optional

from ..config import OffloadConfig
from ..core.errors import OffloadTransportError
from ..core.surface import Surface
from .pool import WorkerPool
from .worker import in_worker_context, workers_supported

logger = logging.getLogger(__name__)


class OffloadCoordinator:
    """볼륨 하나에 대한 비동기 등치면 추출 조정자.

    워커 풀은 첫 비동기 요청 때 만들고, 데이터 교체(reset) 또는
    볼륨 폐기(terminate) 시 종료한다.
    """

    def __init__(
        self,
        volume,
        config: Optional[OffloadConfig] = None,
        pool_factory: Callable[..., WorkerPool] = WorkerPool,
    ):
        self.volume = volume
        self.config = config or OffloadConfig()
        self.pool_factory = pool_factory
        self.pool = None
        self._finalizer = None
        self._lock = threading.Lock()

    def can_offload(self) -> bool:
        """워커 사용 가능 여부 (설정, 플랫폼, 워커 내부 실행 여부)."""
        if not self.config.enabled or in_worker_context():
            return False
        return workers_supported(self.config.start_method)

    def _ensure_pool(self):
        with self._lock:
            if self.pool is None:
                pool = self.pool_factory(
                    "surf",
                    pool_size=self.config.pool_size,
                    start_method=self.config.start_method,
                )
                self.pool = pool
                self._finalizer = weakref.finalize(self, pool.terminate)
            return self.pool

    def reset(self) -> None:
        """워커 풀 종료 — 이전 샘플로 응답하는 워커가 남지 않도록."""
        with self._lock:
            pool, self.pool = self.pool, None
            if self._finalizer is not None:
                self._finalizer.detach()
                self._finalizer = None
        if pool is not None:
            pool.terminate()

    terminate = reset

    def extract_async(
        self,
        isolevel=None,
        smooth=0,
        center=None,
        size=None,
        callback: Optional[Callable[[Surface], None]] = None,
        error_callback: Optional[Callable[[BaseException], None]] = None,
    ) -> "Future[Surface]":
        """비동기 등치면 추출.

        워커를 쓸 수 없으면 즉시 동기 추출하고 같은 콜백 경로로 전달한다.
        이 경우 추출 오류는 호출자에게 그대로 전파된다.

        Args:
            isolevel, smooth, center, size: Volume.get_surface()와 동일
            callback: 성공 시 Surface를 받는 1회성 콜백
            error_callback: 폴백 추출마저 실패했을 때 예외를 받는 콜백

        Returns:
            Surface로 완료되는 Future
        """
        isolevel = self.volume.extractor.resolve_isolevel(isolevel)
        smooth = int(smooth or 0)
        result: "Future[Surface]" = Future()

        def deliver(surface: Surface) -> None:
            result.set_result(surface)
            if callback is not None:
                callback(surface)

        def fail(error: BaseException) -> None:
            result.set_exception(error)
            if error_callback is not None:
                error_callback(error)

        if not self.can_offload():
            deliver(self.volume.get_surface(isolevel, smooth, center, size))
            return result

        try:
            pool = self._ensure_pool()
        except (OSError, ValueError, NotImplementedError) as e:
            logger.warning("워커 풀 생성 실패 — 동기 추출로 진행: %s", e)
            deliver(self.volume.get_surface(isolevel, smooth, center, size))
            return result

        worker = pool.get_next_worker()
        payload = {
            "volume": None,
            "config": None,
            "params": {
                "isolevel": isolevel,
                "smooth": smooth,
                "center": None if center is None else [float(c) for c in center],
                "size": size,
            },
        }

        def snapshot():
            logger.debug("worker %d: 볼륨 스냅샷 포함", worker.index)
            extra = {
                "volume": self.volume.to_dict(),
                "config": self.volume.config.model_dump(),
            }
            return extra, self.volume.get_transferable()

        def on_success(reply: dict) -> None:
            try:
                surface = Surface.from_dict(reply)
            except (KeyError, TypeError, ValueError) as e:
                on_error(e)
                return
            deliver(surface)

        def on_error(error: BaseException) -> None:
            err = OffloadTransportError(
                "워커 등치면 추출 실패 — 워커 없이 재시도",
                worker_index=worker.index,
                cause=error,
            )
            logger.warning("%s", err)
            try:
                surface = self.volume.get_surface(isolevel, smooth, center, size)
            except Exception as e:
                logger.error("동기 폴백 추출 실패: %s", e)
                fail(e)
                return
            deliver(surface)

        logger.debug(
            "worker %d 디스패치 (isolevel=%.4g, smooth=%d)",
            worker.index, isolevel, smooth,
        )
        worker.post(payload, None, on_success, on_error, snapshot=snapshot)
        return result

"""재사용 워커 풀 — 워커마다 단일 프로세스 executor.

워커별 상태(재구성된 볼륨)를 유지해야 하므로 하나의 공유 풀 대신
max_workers=1 인 ProcessPoolExecutor를 워커 수만큼 둔다.
"""

import logging
import multiprocessing
import threading
from concurrent.futures import Future, ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from typing import Callable, Optional, Tuple

from ..core.errors import WorkerStateError
from .worker import mark_worker_context, run_surface_task

logger = logging.getLogger(__name__)


class Worker:
    """단일 백그라운드 워커 프로세스.

    Attributes:
        index: 풀 내 번호
        post_count: 현재 프로세스에 보낸 메시지 수 (0이면 볼륨 스냅샷 필요)
        pending: 응답 대기 중인 메시지 수
    """

    def __init__(self, index: int, mp_context, task: Callable = run_surface_task):
        self.index = index
        self.post_count = 0
        self.pending = 0
        self._mp_context = mp_context
        self._task = task
        self._executor: Optional[ProcessPoolExecutor] = None
        self._lock = threading.RLock()

    def _ensure_executor(self) -> ProcessPoolExecutor:
        if self._executor is None:
            self._executor = ProcessPoolExecutor(
                max_workers=1,
                mp_context=self._mp_context,
                initializer=mark_worker_context,
            )
            self.post_count = 0
        return self._executor

    def post(
        self,
        payload: dict,
        transfer: Optional[list],
        on_success: Callable[[object], None],
        on_error: Callable[[BaseException], None],
        snapshot: Optional[Callable[[], Tuple[dict, Optional[list]]]] = None,
    ) -> None:
        """메시지 전송. on_success/on_error 중 정확히 하나가 한 번 호출된다.

        transfer는 소유권 이동 대상 버퍼 목록이다. 프로세스 전송은
        pickle 복사를 하므로 참고용으로만 쓴다.

        snapshot은 (추가 payload 항목, transfer)를 돌려주는 함수로, 현재
        프로세스에 보내는 첫 메시지일 때만 락 안에서 호출된다. 프로세스가
        교체된 직후의 메시지에도 스냅샷이 빠지지 않는다.
        """
        with self._lock:
            try:
                executor = self._ensure_executor()
                if snapshot is not None and self.post_count == 0:
                    extra, transfer = snapshot()
                    payload = {**payload, **extra}
                future = executor.submit(self._task, payload)
            except (BrokenProcessPool, RuntimeError, OSError) as e:
                self._discard_locked()
                submit_error = e
            else:
                submit_error = None
                self.post_count += 1
                self.pending += 1

        if submit_error is not None:
            on_error(submit_error)
            return

        if transfer:
            logger.debug(
                "worker %d: 버퍼 %d개 (%d bytes) 전송",
                self.index, len(transfer), sum(getattr(b, "nbytes", 0) for b in transfer),
            )

        future.add_done_callback(lambda f: self._on_done(f, on_success, on_error))

    def _on_done(self, future: Future, on_success, on_error) -> None:
        with self._lock:
            self.pending -= 1
            error = future.exception() if not future.cancelled() else RuntimeError("작업 취소됨")
            if isinstance(error, BrokenProcessPool):
                # 새 프로세스는 볼륨 상태가 없으므로 다음 전송에 스냅샷 포함
                self._discard_locked()
            elif isinstance(error, WorkerStateError):
                # 프로세스는 살아 있지만 볼륨이 없음: 다음 전송에 스냅샷 포함
                self.post_count = 0

        if error is not None:
            on_error(error)
        else:
            on_success(future.result())

    def _discard_locked(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
        self._executor = None
        self.post_count = 0

    def terminate(self) -> None:
        with self._lock:
            self._discard_locked()


class WorkerPool:
    """고정 크기 워커 풀 (기본 2개).

    다음 워커는 대기 메시지가 가장 적은 워커, 동률이면 라운드 로빈으로 고른다.
    """

    def __init__(self, name: str = "surf", pool_size: int = 2, start_method: str = "spawn"):
        self.name = name
        self.pool_size = pool_size
        ctx = multiprocessing.get_context(start_method)
        self.workers = [Worker(i, ctx) for i in range(pool_size)]
        self._next = 0
        self._lock = threading.Lock()

    def get_next_worker(self) -> Worker:
        with self._lock:
            order = [(self._next + k) % self.pool_size for k in range(self.pool_size)]
            best = min(order, key=lambda i: self.workers[i].pending)
            self._next = (best + 1) % self.pool_size
            return self.workers[best]

    def terminate(self) -> None:
        """모든 워커 프로세스 종료.

        이미 보낸 메시지는 끝까지 처리되어 각자 한 번 응답한 뒤 프로세스가 끝난다.
        """
        for worker in self.workers:
            worker.terminate()
        logger.debug("워커 풀 '%s' 종료", self.name)

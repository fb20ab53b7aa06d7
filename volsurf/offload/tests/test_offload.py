"""OffloadCoordinator 테스트 — 워커 디스패치, 스냅샷 프로토콜, 동기 폴백."""

import threading

import numpy as np
import pytest

from volsurf.config import OffloadConfig, SmoothingConfig, VolumeConfig
from volsurf.core.volume import Volume
from volsurf.offload import coordinator as coordinator_module
from volsurf.offload import worker as worker_module
from volsurf.offload.coordinator import OffloadCoordinator


def _ball(n=12, radius=4.0):
    c = (n - 1) / 2.0
    z, y, x = np.mgrid[0:n, 0:n, 0:n].astype(np.float32)
    return (radius - np.sqrt((x - c) ** 2 + (y - c) ** 2 + (z - c) ** 2)).reshape(-1)


def _assert_same_surface(a, b):
    assert a.n_faces == b.n_faces
    np.testing.assert_allclose(a.position, b.position, atol=1e-5)
    np.testing.assert_array_equal(a.index, b.index)


class _InProcessWorker:
    """프로세스 없이 워커 작업을 그 자리에서 실행하는 가짜 워커."""

    def __init__(self, index, fail_with=None):
        self.index = index
        self.post_count = 0
        self.pending = 0
        self.payloads = []
        self.fail_with = fail_with

    def post(self, payload, transfer, on_success, on_error, snapshot=None):
        if snapshot is not None and self.post_count == 0:
            extra, transfer = snapshot()
            payload = {**payload, **extra}
        self.payloads.append(payload)
        self.post_count += 1
        if self.fail_with is not None:
            on_error(self.fail_with)
            return
        try:
            reply = worker_module.run_surface_task(payload)
        except Exception as e:
            on_error(e)
            return
        on_success(reply)


class _FakePool:
    instances = []

    def __init__(self, name, pool_size=2, start_method="spawn", fail_with=None):
        self.name = name
        self.workers = [_InProcessWorker(i, fail_with) for i in range(pool_size)]
        self.terminated = False
        self._next = 0
        _FakePool.instances.append(self)

    def get_next_worker(self):
        w = self.workers[self._next]
        self._next = (self._next + 1) % len(self.workers)
        return w

    def terminate(self):
        self.terminated = True


@pytest.fixture(autouse=True)
def _fresh_worker_state(monkeypatch):
    """테스트마다 워커 전역 상태 초기화."""
    monkeypatch.setattr(worker_module, "_worker_volume", None)
    monkeypatch.setattr(worker_module, "_in_worker", False)
    _FakePool.instances = []


@pytest.fixture
def volume():
    vol = Volume("ball", "", _ball(), 12, 12, 12)
    m = np.diag([2.0, 2.0, 2.0, 1.0])
    m[:3, 3] = [5.0, 0.0, -1.0]
    vol.set_transform(m)
    yield vol
    vol.dispose()


def _use_pool(volume, pool_factory):
    volume.offload = OffloadCoordinator(volume, OffloadConfig(), pool_factory=pool_factory)
    return volume.offload


class TestSynchronousFallback:
    """워커를 쓸 수 없는 환경."""

    def test_unsupported_environment(self, volume, monkeypatch):
        """워커 미지원 → 동기 추출과 같은 결과를 콜백으로 한 번 전달."""
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: False)
        received = []

        future = volume.get_surface_async(0.0, 1, callback=received.append)

        assert future.done()
        assert len(received) == 1
        assert received[0] is future.result()
        _assert_same_surface(future.result(), volume.get_surface(0.0, 1))

    def test_disabled_by_config(self):
        cfg = VolumeConfig(offload=OffloadConfig(enabled=False))
        vol = Volume("b", "", _ball(), 12, 12, 12, config=cfg)
        assert not vol.offload.can_offload()
        surf = vol.get_surface_async(0.0).result()
        _assert_same_surface(surf, vol.get_surface(0.0))
        assert vol.offload.pool is None

    def test_inside_worker_runs_inline(self, volume, monkeypatch):
        """워커 프로세스 안에서는 다시 오프로드하지 않음."""
        monkeypatch.setattr(worker_module, "_in_worker", True)
        assert not volume.offload.can_offload()
        volume.get_surface_async(0.0).result()
        assert volume.offload.pool is None

    def test_default_isolevel_resolved(self, volume, monkeypatch):
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: False)
        surf = volume.get_surface_async().result()
        assert surf.info["isolevel"] == pytest.approx(volume.get_value_for_sigma(2.0))

    def test_sync_errors_propagate(self, volume, monkeypatch):
        """동기 경로의 알고리즘 오류는 그대로 전파."""
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: False)

        def boom(*args, **kwargs):
            raise MemoryError("no memory")

        monkeypatch.setattr(volume.extractor, "extract", boom)
        with pytest.raises(MemoryError):
            volume.get_surface_async(0.0)


class TestWorkerProtocol:
    """스냅샷 전송 프로토콜 (가짜 인프로세스 풀)."""

    def test_snapshot_only_on_first_post(self, volume, monkeypatch):
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: True)
        offload = _use_pool(volume, _FakePool)

        volume.get_surface_async(0.0).result()
        volume.get_surface_async(0.5).result()
        volume.get_surface_async(1.0).result()

        pool = offload.pool
        w0, w1 = pool.workers
        assert w0.payloads[0]["volume"] is not None
        assert w1.payloads[0]["volume"] is not None
        assert w0.payloads[1]["volume"] is None
        assert w0.payloads[1]["params"]["isolevel"] == 1.0

    def test_worker_result_matches_sync(self, volume, monkeypatch):
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: True)
        _use_pool(volume, _FakePool)

        surf = volume.get_surface_async(0.0, 2, center=volume.center, size=6.0).result()
        _assert_same_surface(surf, volume.get_surface(0.0, 2, volume.center, 6.0))
        assert surf.info == {"isolevel": 0.0, "smooth": 2}

    def test_set_data_terminates_pool(self, volume, monkeypatch):
        """데이터 교체 시 풀 종료, 다음 요청은 새 스냅샷."""
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: True)
        offload = _use_pool(volume, _FakePool)

        volume.get_surface_async(0.0).result()
        old_pool = offload.pool

        volume.set_data(np.array([0, 0, 0, 0, 1, 1, 1, 1], dtype=np.float32), 2, 2, 2)
        assert old_pool.terminated
        assert offload.pool is None

        surf = volume.get_surface_async(0.5).result()
        assert offload.pool is not old_pool
        assert offload.pool.workers[0].payloads[0]["volume"]["nx"] == 2
        _assert_same_surface(surf, volume.get_surface(0.5))

    def test_dispose_terminates_pool(self, volume, monkeypatch):
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: True)
        offload = _use_pool(volume, _FakePool)
        volume.get_surface_async(0.0).result()
        pool = offload.pool
        volume.dispose()
        assert pool.terminated

    def test_set_transform_terminates_pool(self, volume, monkeypatch):
        """변환 교체 시 풀 종료, 이후 비동기 결과는 새 변환 기준."""
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: True)
        offload = _use_pool(volume, _FakePool)

        # 두 워커 모두 이전 변환의 스냅샷을 보유
        volume.get_surface_async(0.0).result()
        volume.get_surface_async(0.0).result()
        old_pool = offload.pool

        m = volume.transform.copy()
        m[0, 3] += 100.0
        volume.set_transform(m)
        assert old_pool.terminated
        assert offload.pool is None

        surf = volume.get_surface_async(0.3).result()
        _assert_same_surface(surf, volume.get_surface(0.3))
        assert surf.vertices[:, 0].min() > 100.0
        # 열 우선 배열: 12번이 x 이동
        assert offload.pool.workers[0].payloads[0]["volume"]["transform"][12] == pytest.approx(105.0)

    def test_worker_uses_volume_config(self, monkeypatch):
        """기본값이 아닌 스무딩 설정도 워커에 전달되어 동기 결과와 일치."""
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: True)
        cfg = VolumeConfig(
            smoothing=SmoothingConfig(volume_preserving=False, lambda_factor=0.9),
        )
        vol = Volume("b", "", _ball(), 12, 12, 12, config=cfg)
        try:
            offload = _use_pool(vol, _FakePool)
            surf = vol.get_surface_async(0.0, 5).result()

            _assert_same_surface(surf, vol.get_surface(0.0, 5))
            sent = offload.pool.workers[0].payloads[0]["config"]
            assert sent["smoothing"]["lambda_factor"] == 0.9
            assert sent["smoothing"]["volume_preserving"] is False
            assert worker_module._worker_volume.config.smoothing.lambda_factor == 0.9
        finally:
            vol.dispose()

    def test_worker_without_volume_falls_back(self, volume, monkeypatch, caplog):
        """볼륨을 잃은 워커는 빈 등치면 대신 오류를 내고 동기 결과가 전달됨."""
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: True)
        _use_pool(volume, _FakePool)
        volume.get_surface_async(0.0).result()
        volume.get_surface_async(0.0).result()

        # 두 워커 모두 post_count > 0 이지만 워커 쪽 볼륨은 사라진 상태
        monkeypatch.setattr(worker_module, "_worker_volume", None)
        with caplog.at_level("WARNING"):
            surf = volume.get_surface_async(0.5).result()

        assert surf.n_faces > 0
        _assert_same_surface(surf, volume.get_surface(0.5))
        assert any("워커 상태 오류" in r.message for r in caplog.records)


class TestTransportFailure:
    """워커 전송 실패 → 동기 폴백."""

    def _failing_pool(self, error):
        def factory(name, pool_size=2, start_method="spawn"):
            return _FakePool(name, pool_size, start_method, fail_with=error)
        return factory

    def test_fallback_delivers_surface(self, volume, monkeypatch, caplog):
        """전송 오류는 호출자에게 전달되지 않고 경고 후 동기 결과 전달."""
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: True)
        _use_pool(volume, self._failing_pool(BrokenPipeError("pipe closed")))
        received, errors = [], []

        with caplog.at_level("WARNING"):
            future = volume.get_surface_async(
                0.0, callback=received.append, error_callback=errors.append,
            )

        _assert_same_surface(future.result(), volume.get_surface(0.0))
        assert len(received) == 1
        assert errors == []
        assert any("워커 전송 오류" in r.message for r in caplog.records)

    def test_fallback_failure_reported_once(self, volume, monkeypatch):
        """폴백 추출마저 실패하면 error_callback으로 한 번 전달."""
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: True)
        _use_pool(volume, self._failing_pool(EOFError("gone")))

        def boom(*args, **kwargs):
            raise MemoryError("no memory")

        monkeypatch.setattr(volume.extractor, "extract", boom)
        received, errors = [], []
        future = volume.get_surface_async(
            0.0, callback=received.append, error_callback=errors.append,
        )

        assert received == []
        assert len(errors) == 1
        assert isinstance(errors[0], MemoryError)
        assert isinstance(future.exception(), MemoryError)

    def test_pool_creation_failure(self, volume, monkeypatch, caplog):
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: True)

        def broken_factory(*args, **kwargs):
            raise OSError("no semaphores")

        _use_pool(volume, broken_factory)
        with caplog.at_level("WARNING"):
            surf = volume.get_surface_async(0.0).result()
        _assert_same_surface(surf, volume.get_surface(0.0))
        assert any("워커 풀 생성 실패" in r.message for r in caplog.records)

    def test_bad_reply_falls_back(self, volume, monkeypatch):
        """해석할 수 없는 응답도 전송 오류로 취급."""
        monkeypatch.setattr(coordinator_module, "workers_supported", lambda *a: True)

        class _GarbageWorker(_InProcessWorker):
            def post(self, payload, transfer, on_success, on_error, snapshot=None):
                on_success({"unexpected": True})

        class _GarbagePool(_FakePool):
            def __init__(self, name, pool_size=2, start_method="spawn"):
                super().__init__(name, pool_size, start_method)
                self.workers = [_GarbageWorker(i) for i in range(pool_size)]

        _use_pool(volume, _GarbagePool)
        surf = volume.get_surface_async(0.0).result()
        _assert_same_surface(surf, volume.get_surface(0.0))


class TestProcessPool:
    """실제 워커 프로세스."""

    def test_real_workers_match_sync(self, volume):
        if not volume.offload.can_offload():
            pytest.skip("이 환경에서는 워커 프로세스를 사용할 수 없음")

        done = threading.Event()
        received = []

        def on_surface(surface):
            received.append(surface)
            done.set()

        future = volume.get_surface_async(0.0, 1, callback=on_surface)
        surf = future.result(timeout=120)
        assert done.wait(timeout=5)
        assert len(received) == 1 and received[0] is surf
        _assert_same_surface(surf, volume.get_surface(0.0, 1))

        # 두 번째 요청은 스냅샷 없이 (다른 워커 또는 같은 워커)
        second = volume.get_surface_async(0.5).result(timeout=120)
        _assert_same_surface(second, volume.get_surface(0.5))

    def test_real_workers_follow_transform(self, volume):
        """변환 교체 뒤 실제 워커 결과도 새 월드 좌표."""
        if not volume.offload.can_offload():
            pytest.skip("이 환경에서는 워커 프로세스를 사용할 수 없음")

        volume.get_surface_async(0.3).result(timeout=120)
        volume.get_surface_async(0.3).result(timeout=120)

        m = volume.transform.copy()
        m[0, 3] += 100.0
        volume.set_transform(m)

        for _ in range(2):
            surf = volume.get_surface_async(0.3).result(timeout=120)
            _assert_same_surface(surf, volume.get_surface(0.3))

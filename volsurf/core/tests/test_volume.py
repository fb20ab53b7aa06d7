"""Volume 파사드 테스트 — 데이터 교체, 직렬화, 레지스트리, 필터 노출."""

import math

import numpy as np
import pytest

from volsurf.config import RegistryConfig, VolumeConfig
from volsurf.core.errors import InvalidDimensions
from volsurf.core.registry import InMemoryRegistry
from volsurf.core.serialize import from_dict
from volsurf.core.surface import Surface
from volsurf.core.volume import Volume


def _ball(n=12, radius=4.0):
    c = (n - 1) / 2.0
    z, y, x = np.mgrid[0:n, 0:n, 0:n].astype(np.float32)
    return (radius - np.sqrt((x - c) ** 2 + (y - c) ** 2 + (z - c) ** 2)).reshape(-1)


def _affine():
    m = np.diag([1.5, 2.0, 0.5, 1.0])
    m[:3, 3] = [-3.0, 4.0, 1.0]
    return m


@pytest.fixture
def ball_volume():
    vol = Volume("ball", "/data/ball.npz", _ball(), 12, 12, 12)
    vol.set_transform(_affine())
    yield vol
    vol.dispose()


class TestVolumeData:
    """데이터 설정과 통계."""

    def test_statistics_passthrough(self, ball_volume):
        f = ball_volume.field
        assert ball_volume.get_data_min() == f.get_min()
        assert ball_volume.get_data_max() == f.get_max()
        assert ball_volume.get_data_mean() == f.get_mean()
        assert ball_volume.get_data_rms() == f.get_rms()
        v = ball_volume.get_value_for_sigma(1.0)
        assert ball_volume.get_sigma_for_value(v) == pytest.approx(1.0)

    def test_invalid_dimensions(self):
        with pytest.raises(InvalidDimensions):
            Volume("bad", "", np.zeros(10), 2, 2, 2)

    def test_lenient_config(self):
        cfg = VolumeConfig(strict_dimensions=False)
        vol = Volume("lenient", "", np.zeros(10), 2, 2, 2, config=cfg)
        assert vol.field.n_samples == 10

    def test_set_data_resets_caches(self, ball_volume):
        """데이터 교체 시 삼각분할/필터/통계 초기화, 바운딩 박스 갱신."""
        ball_volume.get_surface(0.0)
        ball_volume.filter_data(0.0, None)
        assert ball_volume.extractor._mc is not None
        assert ball_volume.filter_view.values is not None

        ball_volume.set_data(np.arange(8, dtype=np.float32), 2, 2, 2)
        assert ball_volume.extractor._mc is None
        assert ball_volume.filter_view.values is None
        assert ball_volume.get_data_max() == 7.0

        m = _affine()
        expected_max = m[:3, :3] @ np.ones(3) + m[:3, 3]
        np.testing.assert_allclose(ball_volume.bounding_box[1], expected_max)

    def test_get_box(self, ball_volume):
        box = ball_volume.get_box(ball_volume.center, 1.0)
        assert box.shape == (2, 3)
        assert np.all(box[0] <= box[1])


class TestVolumeSurface:
    """등치면 추출 파사드."""

    def test_surface_carries_identity(self, ball_volume):
        surf = ball_volume.get_surface(0.0)
        assert isinstance(surf, Surface)
        assert surf.name == "ball"
        assert surf.path == "/data/ball.npz"
        assert surf.n_faces > 0

    def test_surface_inside_bounding_box(self, ball_volume):
        surf = ball_volume.get_surface(0.0, smooth=1)
        lo, hi = surf.get_bounds()
        bb = ball_volume.bounding_box
        assert np.all(lo >= bb[0] - 1e-4)
        assert np.all(hi <= bb[1] + 1e-4)


class TestSerialization:
    """to_dict / from_dict."""

    def test_wire_format(self, ball_volume):
        d = ball_volume.to_dict()
        assert d["metadata"]["type"] == "Volume"
        assert d["metadata"]["version"] == 0.1
        assert (d["nx"], d["ny"], d["nz"]) == (12, 12, 12)
        assert len(d["transform"]) == 16
        assert len(d["normal_transform"]) == 9
        assert len(d["inverse_transform"]) == 16
        assert len(d["center"]) == 3
        assert set(d["bounding_box"]) == {"min", "max"}
        # 열 우선: 평행이동은 12~14
        assert d["transform"][12:15] == [-3.0, 4.0, 1.0]
        assert "header" not in d

    @pytest.mark.parametrize("smooth", [0, 2])
    def test_round_trip(self, ball_volume, smooth):
        """복원한 볼륨은 같은 통계/변환/등치면."""
        restored = Volume.from_dict(ball_volume.to_dict())

        assert restored.get_data_min() == ball_volume.get_data_min()
        assert restored.get_data_max() == ball_volume.get_data_max()
        np.testing.assert_allclose(restored.transform, ball_volume.transform)
        np.testing.assert_allclose(restored.inverse_transform, ball_volume.inverse_transform)
        np.testing.assert_allclose(restored.bounding_box, ball_volume.bounding_box)

        a = ball_volume.get_surface(0.5, smooth)
        b = restored.get_surface(0.5, smooth)
        assert a.n_faces == b.n_faces
        np.testing.assert_allclose(a.position, b.position, atol=1e-5)
        restored.dispose()

    def test_header_round_trip(self):
        vol = Volume("h", "", _ball(), 12, 12, 12, header={"DMEAN": 1.0, "ARMS": 0.5})
        restored = Volume.from_dict(vol.to_dict())
        assert restored.header == {"DMEAN": 1.0, "ARMS": 0.5}

    def test_serialize_dispatch(self, ball_volume):
        vol = from_dict(ball_volume.to_dict())
        assert isinstance(vol, Volume)
        surf = from_dict(ball_volume.get_surface(0.0).to_dict())
        assert isinstance(surf, Surface)
        with pytest.raises(ValueError):
            from_dict({"metadata": {"type": "Unknown"}})

    def test_clone_independent(self, ball_volume):
        """clone은 같은 데이터/변환, 이후 변경은 독립."""
        c = ball_volume.clone()
        np.testing.assert_array_equal(c.samples, ball_volume.samples)
        np.testing.assert_allclose(c.transform, ball_volume.transform)
        c.set_transform(np.eye(4))
        assert not np.allclose(ball_volume.transform, np.eye(4))
        c.dispose()

    def test_transferable(self):
        owner = np.ones(8, dtype=np.int32)
        vol = Volume("o", "", np.arange(8, dtype=np.float32), 2, 2, 2, owner)
        buffers = vol.get_transferable()
        assert buffers[0] is vol.samples
        assert buffers[1] is vol.sample_owner


class TestRegistry:
    """레지스트리 연동."""

    def test_registered_on_create(self):
        reg = InMemoryRegistry()
        vol = Volume("r", "", np.zeros(8), 2, 2, 2, registry=reg)
        assert vol in reg
        assert reg.get_gid_range(vol)[1] == 8

    def test_update_on_replace(self):
        reg = InMemoryRegistry()
        vol = Volume("r", "", np.zeros(8), 2, 2, 2, registry=reg)
        vol.set_data(np.zeros(27), 3, 3, 3)
        assert reg.get_gid_range(vol)[1] == 27

    def test_large_volume_not_registered(self, caplog):
        """샘플 수 10^7 초과 → 등록하지 않고 경고."""
        reg = InMemoryRegistry()
        n = 10**7 + 1
        with caplog.at_level("WARNING"):
            vol = Volume("big", "", np.zeros(n, dtype=np.float32), n, 1, 1, registry=reg)
        assert vol not in reg
        assert any(r.levelname == "WARNING" for r in caplog.records)

    def test_threshold_from_config(self, caplog):
        """임계값을 넘도록 커지면 등록 해제."""
        reg = InMemoryRegistry()
        cfg = VolumeConfig(registry=RegistryConfig(max_samples=10))
        vol = Volume("r", "", np.zeros(8), 2, 2, 2, registry=reg, config=cfg)
        assert vol in reg
        with caplog.at_level("WARNING"):
            vol.set_data(np.zeros(27), 3, 3, 3)
        assert vol not in reg
        assert any("레지스트리" in r.message for r in caplog.records)

    def test_context_manager_unregisters(self):
        reg = InMemoryRegistry()
        with Volume("ctx", "", np.zeros(8), 2, 2, 2, registry=reg) as vol:
            assert vol in reg
        assert vol not in reg


class TestFilterExposure:
    """filter_data / data / 위치 / 크기."""

    def test_data_before_filter(self, ball_volume):
        assert ball_volume.data is ball_volume.samples
        assert ball_volume.data_position is None
        assert ball_volume.get_data_position().shape == (12 ** 3, 3)

    def test_filtered_data(self, ball_volume):
        ball_volume.filter_data(3.0, None)
        data = ball_volume.data
        assert data.size > 0
        assert np.all(data >= 3.0)
        assert ball_volume.get_data_position().shape == (data.size, 3)

    def test_positions_follow_transform(self, ball_volume):
        """필터 후 변환을 바꾸면 다시 필터하지 않아도 새 월드 위치."""
        ball_volume.filter_data(3.0, None)
        before = np.array(ball_volume.get_data_position())

        m = _affine()
        m[:3, 3] += [100.0, 0.0, 0.0]
        ball_volume.set_transform(m)

        after = ball_volume.get_data_position()
        assert after.shape == before.shape
        np.testing.assert_allclose(after[:, 0], before[:, 0] + 100.0, atol=1e-4)
        np.testing.assert_allclose(after[:, 1:], before[:, 1:], atol=1e-5)
        np.testing.assert_allclose(ball_volume.data_position, after)

    def test_header_default_min(self):
        """최소값을 주지 않으면 헤더의 DMEAN + 2·ARMS."""
        samples = np.arange(8, dtype=np.float32)
        vol = Volume("h", "", samples, 2, 2, 2, header={"DMEAN": 2.0, "ARMS": 1.5})
        vol.filter_data(None, None)
        np.testing.assert_array_equal(vol.data, [5, 6, 7])

    def test_data_size_modes(self):
        vol = Volume("s", "", np.array([-2, -1, 0, 1, 2, 3, 4, 5], dtype=np.float32), 2, 2, 2)
        np.testing.assert_allclose(vol.get_data_size("value"), vol.samples)
        np.testing.assert_allclose(vol.get_data_size("abs-value")[:2], [2, 1])
        np.testing.assert_allclose(vol.get_data_size("value-min")[0], 0.0)
        np.testing.assert_allclose(vol.get_data_size("deviation"), vol.samples)
        np.testing.assert_allclose(vol.get_data_size(0.5), np.full(8, 0.5))
        np.testing.assert_allclose(vol.get_data_size("value", scale=2.0)[-1], 10.0)

    def test_data_size_not_aliasing(self):
        """크기 배열 수정이 원본 샘플에 영향 없음."""
        vol = Volume("s", "", np.ones(8, dtype=np.float32), 2, 2, 2)
        size = vol.get_data_size("value")
        size[:] = 0
        assert math.isclose(vol.get_data_min(), 1.0)
        assert vol.samples[0] == 1.0

"""CLI 진입점 — Typer 서브커맨드."""

import logging
import time
from pathlib import Path
from typing import Optional

import numpy as np
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import VolumeConfig
from .core.errors import VolumeError

app = typer.Typer(
    name="volsurf",
    help="3D 스칼라 볼륨 통계 / 등치면 추출 / 값 범위 필터",
    no_args_is_help=True,
)

console = Console()
logger = logging.getLogger(__name__)


@app.callback()
def main(
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="로그 상세도 (-v: INFO, -vv: DEBUG)"),
):
    """volsurf 명령행 도구."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def _load_config(config_path: Optional[Path]) -> VolumeConfig:
    if config_path and config_path.exists():
        return VolumeConfig.from_toml(config_path)
    return VolumeConfig.default()


def _parse_center(center: Optional[str]):
    """'x,y,z' → [x, y, z]."""
    if center is None:
        return None
    parts = [p for p in center.replace(" ", "").split(",") if p]
    if len(parts) != 3:
        raise typer.BadParameter(f"중심은 'x,y,z' 형식이어야 합니다: {center}")
    return [float(p) for p in parts]


def _load(input_path: Path, cfg: VolumeConfig):
    from .core.volume_io import load_volume

    try:
        return load_volume(input_path, config=cfg)
    except (FileNotFoundError, ValueError, ImportError, VolumeError) as e:
        console.print(f"[red]실패[/]: {e}")
        raise typer.Exit(1)


@app.command()
def stats(
    input_path: Path = typer.Argument(..., help="입력 볼륨 (.npz / NIfTI / NRRD / MetaImage)"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="설정 파일 경로 (TOML)"),
):
    """볼륨 통계 (min/max/mean/rms)와 격자 정보 출력."""
    cfg = _load_config(config_path)
    vol = _load(input_path, cfg)

    table = Table(title=f"{vol.name or input_path.name}")
    table.add_column("항목", style="cyan")
    table.add_column("값", justify="right")

    table.add_row("격자", f"{vol.nx} x {vol.ny} x {vol.nz}")
    table.add_row("샘플 수", f"{vol.field.n_samples:,}")
    table.add_row("min", f"{vol.get_data_min():.6g}")
    table.add_row("max", f"{vol.get_data_max():.6g}")
    table.add_row("mean", f"{vol.get_data_mean():.6g}")
    table.add_row("rms", f"{vol.get_data_rms():.6g}")
    table.add_row(
        f"mean + {cfg.statistics.default_sigma:g}σ",
        f"{vol.get_value_for_sigma(cfg.statistics.default_sigma):.6g}",
    )
    bb = vol.bounding_box
    table.add_row("bbox min", ", ".join(f"{v:.4g}" for v in bb[0]))
    table.add_row("bbox max", ", ".join(f"{v:.4g}" for v in bb[1]))

    console.print(table)
    vol.dispose()


@app.command()
def surface(
    input_path: Path = typer.Argument(..., help="입력 볼륨 (.npz / NIfTI / NRRD / MetaImage)"),
    output_path: Path = typer.Option(..., "-o", "--output", help="출력 등치면 (.npz / .obj)"),
    isolevel: Optional[float] = typer.Option(None, "--isolevel", help="등위값 (미지정 시 mean + sigma·rms)"),
    sigma: Optional[float] = typer.Option(None, "--sigma", help="등위값을 mean + sigma·rms 로 지정"),
    smooth: int = typer.Option(0, "--smooth", help="라플라시안 스무딩 반복 횟수"),
    center: Optional[str] = typer.Option(None, "--center", help="추출 영역 중심 'x,y,z' (월드 좌표)"),
    size: Optional[float] = typer.Option(None, "--size", help="추출 영역 반-크기"),
    offload: bool = typer.Option(True, "--offload/--no-offload", help="백그라운드 워커 사용"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="설정 파일 경로 (TOML)"),
):
    """등치면 추출 후 저장."""
    from .core.volume_io import save_surface

    cfg = _load_config(config_path)
    cfg.offload.enabled = cfg.offload.enabled and offload
    center_xyz = _parse_center(center)

    vol = _load(input_path, cfg)
    if isolevel is None and sigma is not None:
        isolevel = vol.get_value_for_sigma(sigma)

    logger.info("등치면 추출: %s (isolevel=%s, smooth=%d, offload=%s)", input_path, isolevel, smooth, cfg.offload.enabled)
    start = time.time()
    try:
        with Progress(SpinnerColumn(), TextColumn("{task.description}"), console=console) as progress:
            progress.add_task("[cyan]surface[/] 추출 중...", total=None)
            future = vol.get_surface_async(isolevel, smooth, center_xyz, size)
            surf = future.result()
    except (ValueError, VolumeError) as e:
        console.print(f"[red]실패[/]: {e}")
        raise typer.Exit(1)
    finally:
        vol.dispose()

    try:
        save_surface(output_path, surf)
    except ValueError as e:
        console.print(f"[red]실패[/]: {e}")
        raise typer.Exit(1)

    console.print(
        f"[green]완료[/]: {output_path} "
        f"(isolevel={surf.info.get('isolevel', float('nan')):.6g}, "
        f"정점 {surf.n_vertices:,}, 삼각형 {surf.n_faces:,}, {time.time() - start:.1f}초)"
    )


@app.command(name="filter")
def filter_(
    input_path: Path = typer.Argument(..., help="입력 볼륨 (.npz / NIfTI / NRRD / MetaImage)"),
    min_value: Optional[float] = typer.Option(None, "--min", help="최소값 (미지정 시 헤더 기본값 또는 -inf)"),
    max_value: Optional[float] = typer.Option(None, "--max", help="최대값 (미지정 시 +inf)"),
    outside: bool = typer.Option(False, "--outside", help="범위 밖 샘플 유지"),
    output_path: Optional[Path] = typer.Option(None, "-o", "--output", help="위치/값 저장 경로 (.npz)"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="설정 파일 경로 (TOML)"),
):
    """값 범위 필터 — 유지된 샘플 수 출력, 선택적으로 위치/값 저장."""
    cfg = _load_config(config_path)
    vol = _load(input_path, cfg)

    logger.info("필터 적용: min=%s, max=%s, outside=%s", min_value, max_value, outside)
    vol.filter_data(min_value, max_value, outside)
    positions = vol.get_data_position()
    values = vol.data
    n = values.size

    console.print(f"[green]유지[/]: {n:,} / {vol.field.n_samples:,} 샘플")

    if output_path is not None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(
            output_path,
            position=np.array(positions, dtype=np.float32),
            value=np.array(values, dtype=np.float32),
        )
        console.print(f"[green]저장[/]: {output_path}")

    vol.dispose()


if __name__ == "__main__":
    app()

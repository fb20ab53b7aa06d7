"""볼륨 코어 예외 정의.

치수 불일치는 호출자에게 전달되고, 워커 전송 오류는 내부에서
동기 추출로 복구되므로 로그로만 남는다.
"""

from typing import Optional


class VolumeError(Exception):
    """볼륨 코어 예외 기본 클래스."""


class InvalidDimensions(VolumeError, ValueError):
    """격자 크기(nx·ny·nz)와 샘플 수 불일치.

    Attributes:
        nx, ny, nz: 요청된 격자 크기
        n_samples: 실제 샘플 수
    """

    def __init__(self, nx: int, ny: int, nz: int, n_samples: int):
        self.nx = nx
        self.ny = ny
        self.nz = nz
        self.n_samples = n_samples
        super().__init__(
            f"[볼륨 검증 오류] 격자 {nx}x{ny}x{nz}={nx * ny * nz} 이(가) "
            f"샘플 수 {n_samples}와 일치하지 않습니다 "
            f"→ 제안: nx·ny·nz가 샘플 배열 길이와 같도록 지정하세요"
        )


class OffloadTransportError(VolumeError, RuntimeError):
    """워커 디스패치/전송 실패.

    호출자에게 전파되지 않는다. 동기 추출 폴백의 원인 기록용.

    Attributes:
        worker_index: 실패한 워커 번호 (알 수 없으면 None)
        cause: 원본 예외
    """

    def __init__(
        self,
        message: str,
        worker_index: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        self.worker_index = worker_index
        self.cause = cause
        full_msg = f"[워커 전송 오류] {message}"
        if cause is not None:
            full_msg += f" ({type(cause).__name__}: {cause})"
        super().__init__(full_msg)


class WorkerStateError(VolumeError, RuntimeError):
    """워커 프로세스가 볼륨 스냅샷 없이 추출 요청을 받음.

    워커 안에서 발생해 부모 프로세스로 전달되며, 조정자는 이를 전송
    오류로 보고 동기 추출로 대체한다.
    """

    def __init__(self, message: str):
        if not message.startswith("[워커 상태 오류]"):
            message = f"[워커 상태 오류] {message}"
        super().__init__(message)

"""삼각형 메쉬 후처리 — 라플라시안 스무딩, 정점 법선 계산.

모든 함수는 평탄(flat) 버퍼를 받는다: position은 xyz 연속, index는 삼각형당 3개.
"""

import numpy as np
from scipy import sparse


def _umbrella_operator(n_vertices: int, faces: np.ndarray):
    """균일 가중치 이웃 평균 연산자 W (n x n CSR)와 이웃 존재 마스크.

    삼각형 변에서 COO triplet을 벡터화 인덱스로 생성 후 scipy sparse로 변환한다.
    """
    i = faces[:, [0, 1, 2, 1, 2, 0]].reshape(-1)
    j = faces[:, [1, 2, 0, 0, 1, 2]].reshape(-1)
    adj = sparse.coo_matrix(
        (np.ones(i.size, dtype=np.float64), (i, j)), shape=(n_vertices, n_vertices)
    ).tocsr()
    # 중복 변(인접 삼각형 공유) 합산 결과를 이진화
    adj.data[:] = 1.0

    degree = np.asarray(adj.sum(axis=1)).reshape(-1)
    has_neighbors = degree > 0
    inv_degree = np.zeros(n_vertices)
    inv_degree[has_neighbors] = 1.0 / degree[has_neighbors]

    return sparse.diags(inv_degree) @ adj, has_neighbors


def laplacian_smooth(
    position: np.ndarray,
    index: np.ndarray,
    iterations: int = 1,
    volume_preserving: bool = True,
    lambda_factor: float = 0.5,
    mu_factor: float = -0.53,
) -> None:
    """라플라시안 스무딩 (제자리).

    volume_preserving이면 반복마다 수축(lambda) 후 팽창(mu) 단계를 적용해
    (Taubin 방식) 둘러싼 체적을 대략 보존한다. 이웃이 없는 정점은 고정.

    Args:
        position: 평탄 정점 좌표 (3N,), 제자리 수정
        index: 평탄 삼각형 인덱스 (3M,)
        iterations: 반복 횟수
        volume_preserving: 체적 보존 여부
        lambda_factor: 수축 계수 (0 < lambda)
        mu_factor: 팽창 계수 (mu < -lambda)
    """
    verts = position.reshape(-1, 3)
    faces = np.asarray(index).reshape(-1, 3).astype(np.int64)
    if iterations <= 0 or len(verts) == 0 or len(faces) == 0:
        return

    W, has_neighbors = _umbrella_operator(len(verts), faces)
    frozen = ~has_neighbors

    def _step(factor: float):
        delta = W @ verts - verts
        delta[frozen] = 0.0
        verts[:] = verts + factor * delta

    for _ in range(int(iterations)):
        _step(lambda_factor)
        if volume_preserving:
            _step(mu_factor)


def compute_vertex_normals(position: np.ndarray, index: np.ndarray) -> np.ndarray:
    """정점 법선 계산.

    면 법선(외적, 면적 가중)을 정점에 누적한 뒤 정규화한다.
    참조 삼각형이 없는 정점은 영벡터.

    Returns:
        평탄 법선 배열 (3N,) float32
    """
    verts = np.asarray(position, dtype=np.float64).reshape(-1, 3)
    faces = np.asarray(index).reshape(-1, 3).astype(np.int64)
    normals = np.zeros_like(verts)

    if len(faces):
        v0, v1, v2 = verts[faces[:, 0]], verts[faces[:, 1]], verts[faces[:, 2]]
        face_normals = np.cross(v1 - v0, v2 - v0)
        # 벡터화: np.add.at으로 Python 루프 제거
        for k in range(3):
            np.add.at(normals, faces[:, k], face_normals)

    norms = np.linalg.norm(normals, axis=1, keepdims=True)
    nonzero = norms[:, 0] > 1e-12
    normals[nonzero] /= norms[nonzero]

    return normals.astype(np.float32).reshape(-1)

"""HTTP and WebSocket API tests against a container without external stores."""

import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from src.api.app import create_app
from src.config import get_env_config
from src.container import build_container
from src.indexer.graph_builder import KnowledgeGraph
from src.indexer.job_manager import JobKind
from src.indexer.repo_meta import RepoMeta
from src.resilience.breakers import BreakerRegistry


@pytest.fixture
def container(temp_dir):
    config = get_env_config()
    config.update(
        {
            "enable_graph_db": False,
            "enable_vector_db": False,
            "voyage_api_key": None,
            "cache_path": None,
            "index_path": temp_dir / "index",
            "clone_dir": temp_dir / "clones",
        }
    )
    return build_container(config, BreakerRegistry())


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as test_client:
        yield test_client


def _wait_for_terminal(client, job_id, timeout=15.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        status = client.get(f"/indexing/{job_id}/status").json()
        if status["phase"] in ("complete", "failed", "cancelled"):
            return status
        time.sleep(0.05)
    raise AssertionError(f"Job {job_id} did not finish")


# ============================================================
# Indexing
# ============================================================


def test_index_local_checkout(client, sample_repo):
    response = client.post("/indexing", json={"repoUrl": str(sample_repo), "token": "tok"})
    assert response.status_code == 201
    index_id = response.json()["indexId"]

    status = _wait_for_terminal(client, index_id)
    assert status["phase"] == "complete", status.get("error")
    assert status["repoId"] == "local/sample-repo"
    assert status["percentage"] == 100
    assert status["filesProcessed"] == 3

    repos = client.get("/graph/repos").json()["repos"]
    assert repos == [{"repoId": "local/sample-repo", "fileCount": 3, "functionCount": 4, "classCount": 1}]

    meta = client.get("/indexing/meta/local/sample-repo")
    assert meta.status_code == 200
    assert meta.json()["repoUrl"] == str(sample_repo)
    assert [m["repoId"] for m in client.get("/indexing/meta").json()["items"]] == ["local/sample-repo"]


def test_index_validation(client):
    assert client.post("/indexing", json={"repoUrl": "https://x/a.git", "token": "   "}).status_code == 400
    assert client.post("/indexing", json={"token": "tok"}).status_code == 422
    assert client.post(
        "/indexing", json={"repoUrl": "https://x/a.git", "token": "tok", "framework": "rails"}
    ).status_code == 422


def test_incremental_requires_changed_files(client):
    response = client.post(
        "/indexing/incremental",
        json={"repoUrl": "https://x/a.git", "token": "tok", "changedFiles": ["  ", ""]},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "changedFiles must contain at least one file"


@pytest.mark.parametrize("path", ["../outside.ts", "/etc/hosts.ts", "src/../../outside.ts"])
def test_incremental_rejects_paths_outside_repository(client, container, path):
    response = client.post(
        "/indexing/incremental",
        json={"repoUrl": "https://x/a.git", "token": "tok", "changedFiles": ["src/main.ts", path]},
    )
    assert response.status_code == 400
    assert response.json()["detail"].startswith("changedFiles must be repository-relative paths")
    assert container.job_manager.list_jobs(JobKind.INDEX)[1] == 0


def test_force_index_needs_metadata(client, container, sample_repo):
    response = client.post("/indexing/force", json={"repoId": "acme/unknown", "token": "tok"})
    assert response.status_code == 404
    assert response.json()["detail"].startswith("Repository metadata not found")

    container.repo_meta.set(RepoMeta(repo_id="acme/shop", repo_url=str(sample_repo), framework="typescript"))
    response = client.post("/indexing/force", json={"repoId": "acme/shop", "token": "tok"})
    assert response.status_code == 201
    status = _wait_for_terminal(client, response.json()["indexId"])
    assert status["phase"] == "complete", status.get("error")
    assert status["repoId"] == "acme/shop"
    assert status["framework"] == "typescript"


def test_job_listing_pages_newest_first(client, container):
    jobs = [container.job_manager.create_job(JobKind.INDEX) for _ in range(3)]
    for i, job in enumerate(jobs):
        job.started_at = 1000.0 + i
    container.job_manager.create_job(JobKind.REVIEW)

    first = client.get("/indexing/jobs", params={"limit": 2}).json()
    assert first["total"] == 3
    assert [j["id"] for j in first["jobs"]] == [jobs[2].job_id, jobs[1].job_id]
    assert first["nextOffset"] == 2

    second = client.get("/indexing/jobs", params={"limit": 2, "offset": 2}).json()
    assert [j["id"] for j in second["jobs"]] == [jobs[0].job_id]
    assert second["nextOffset"] is None

    assert client.get("/indexing/jobs", params={"limit": 101}).status_code == 422


def test_cancel_index_job(client, container):
    job = container.job_manager.create_job(JobKind.INDEX)
    response = client.delete(f"/indexing/{job.job_id}")
    assert response.status_code == 200
    assert response.json() == {"message": "Index job cancelled"}
    assert client.delete(f"/indexing/{job.job_id}").json() == {"message": "Index job already cancelled"}
    assert client.delete("/indexing/does-not-exist").status_code == 404


def test_status_of_wrong_job_kind(client, container):
    review = container.job_manager.create_job(JobKind.REVIEW)
    index = container.job_manager.create_job(JobKind.INDEX)
    assert client.get(f"/indexing/{review.job_id}/status").status_code == 404
    assert client.get(f"/review/{index.job_id}/status").status_code == 404
    assert client.get(f"/review/{review.job_id}/status").json()["kind"] == "review"


def test_frameworks(client):
    frameworks = client.get("/indexing/frameworks").json()["frameworks"]
    assert [f["id"] for f in frameworks] == ["react", "typescript", "java", "spring-boot", "flutter", "ftl"]


# ============================================================
# Graph and review
# ============================================================


def test_graph_views(client, container, parsed_sample):
    graph = KnowledgeGraph("acme/shop")
    graph.build(parsed_sample)
    container.graph_store._graphs["acme/shop"] = graph

    overview = client.get("/graph/acme/shop").json()
    assert len(overview["nodes"]) == 3
    full = client.get("/graph/acme/shop", params={"view": "full"}).json()
    assert len(full["nodes"]) == 8
    assert client.get("/graph/acme/shop", params={"view": "bogus"}).status_code == 422
    assert client.get("/graph/acme/missing").status_code == 404


def test_review_rejects_bad_url(client):
    response = client.post("/review", json={"prUrl": "https://github.com/a/b/pull/1", "token": "tok"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid Bitbucket PR URL format"
    assert client.post("/review", json={"prUrl": "https://bitbucket.org/a/b/pull-requests/1", "token": " "}).status_code == 400


def test_cancel_review(client, container):
    review = container.job_manager.create_job(JobKind.REVIEW)
    assert client.delete(f"/review/{review.job_id}").json() == {"message": "Review job cancelled"}
    assert client.delete("/review/missing").status_code == 404


# ============================================================
# Health and metrics
# ============================================================


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert "timestamp" in body


def test_health_services_degraded_without_stores(client):
    body = client.get("/health/services").json()
    assert body["status"] == "degraded"
    assert body["services"] == {"graphDb": False, "vectorDb": False, "embeddings": False}
    assert body["degradation"]["noEmbeddings"] is True
    assert set(body["circuitBreakers"]) >= {"qdrant", "memgraph", "bitbucket", "voyage-ai"}


def test_metrics_counts_jobs(client, container):
    container.job_manager.create_job(JobKind.INDEX)
    container.job_manager.create_job(JobKind.REVIEW)
    body = client.get("/metrics").json()
    assert body["jobs"] == {"index": {"queued": 1}, "review": {"queued": 1}}
    assert "circuitBreakers" in body and "degradation" in body


# ============================================================
# WebSocket
# ============================================================


def test_ws_requires_job_id(client):
    with client.websocket_connect("/ws") as ws:
        with pytest.raises(WebSocketDisconnect) as info:
            ws.receive_json()
    assert info.value.code == 4000


def test_ws_unknown_job(client):
    with client.websocket_connect("/ws?indexId=missing") as ws:
        with pytest.raises(WebSocketDisconnect) as info:
            ws.receive_json()
    assert info.value.code == 4004


def test_ws_streams_until_terminal(client, container):
    job = container.job_manager.create_job(JobKind.INDEX, repo_id="acme/shop")
    with client.websocket_connect(f"/ws?indexId={job.job_id}") as ws:
        snapshot = ws.receive_json()
        assert snapshot["type"] == "status"
        assert snapshot["phase"] == "queued"

        client.delete(f"/indexing/{job.job_id}")
        final = ws.receive_json()
        assert final["phase"] == "cancelled"
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()

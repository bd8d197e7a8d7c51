from __future__ import annotations

import zlib
from pathlib import Path
from typing import Dict, Generator, Iterator, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from dockerize.main import app
from dockerize.services.docker_backend import Frame, StartResult
from dockerize.services.orchestrator import ContainerRunOrchestrator, get_orchestrator
from dockerize.services.packaging import compress, decompress, zip_pack, zip_unpack
from dockerize.services.schemes import SchemeStore, get_scheme_store


class StubBackend:
    def __init__(self) -> None:
        self.images = {"alpine:latest"}
        self.frames: List[Frame] = [(b"PING example.org\n", None), (b"\n", b"timeout\n")]
        self.removed: List[str] = []
        self.pulled: List[str] = []

    def list_images(self, reference: str) -> List[Dict[str, object]]:
        return [{"RepoTags": [reference]}] if reference in self.images else []

    def pull_image(self, repository: str, tag: Optional[str]) -> Iterator[Dict[str, object]]:
        if repository == "private/tool":
            raise RuntimeError("unauthorized")
        self.pulled.append(f"{repository}:{tag}")
        self.images.add(f"{repository}:{tag}")
        return iter([{"status": "Downloaded newer image"}])

    def create_container(self, image: str, command: List[str]) -> Optional[str]:
        return "abc123"

    def attach_container(self, container_id: str) -> Iterator[Frame]:
        return iter(self.frames)

    def start_container(self, container_id: str) -> StartResult:
        return StartResult.started

    def remove_container(self, container_id: str, force: bool = True) -> None:
        self.removed.append(container_id)


@pytest.fixture
def client(tmp_path: Path) -> Generator[Tuple[TestClient, StubBackend], None, None]:
    """Provide a TestClient whose orchestrator talks to a stub daemon."""
    config = tmp_path / "service-config.yaml"
    config.write_text(
        "default:\n  image: alpine\n  arguments: ping -c 1 {host}\n",
        encoding="utf-8",
    )
    backend = StubBackend()
    store = SchemeStore(config)
    orchestrator = ContainerRunOrchestrator(store, backend, default_tag="latest")

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_scheme_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client, backend
    app.dependency_overrides.clear()


def test_list_schemes(client: Tuple[TestClient, StubBackend]) -> None:
    api, _backend = client

    resp = api.get("/api/schemes")

    assert resp.status_code == 200
    assert resp.json() == [{"name": "default", "image": "alpine", "arguments": "ping -c 1 {host}"}]


def test_list_schemes_does_not_need_docker(client: Tuple[TestClient, StubBackend]) -> None:
    api, _backend = client

    def unreachable_daemon() -> ContainerRunOrchestrator:
        raise AssertionError("listing schemes must not build an orchestrator")

    app.dependency_overrides[get_orchestrator] = unreachable_daemon

    resp = api.get("/api/schemes")

    assert resp.status_code == 200
    assert [item["name"] for item in resp.json()] == ["default"]


def test_run_returns_captured_output(client: Tuple[TestClient, StubBackend]) -> None:
    api, backend = client

    resp = api.post("/api/runs", json={"scheme": "default", "target": "example.org"})

    assert resp.status_code == 200
    assert resp.json() == {"scheme": "default", "target": "example.org", "output": "PING example.org\n"}
    assert backend.removed == ["abc123"]


def test_run_defaults_to_default_scheme(client: Tuple[TestClient, StubBackend]) -> None:
    api, _backend = client

    resp = api.post("/api/runs", json={"target": "example.org"})

    assert resp.status_code == 200
    assert resp.json()["scheme"] == "default"


def test_run_unknown_scheme_is_404(client: Tuple[TestClient, StubBackend]) -> None:
    api, backend = client

    resp = api.post("/api/runs", json={"scheme": "nmap", "target": "example.org"})

    assert resp.status_code == 404
    assert "nmap" in resp.json()["detail"]
    assert backend.removed == []


@pytest.mark.parametrize("target", ["", "   ", "a b"])
def test_run_rejects_unusable_targets(client: Tuple[TestClient, StubBackend], target: str) -> None:
    api, _backend = client

    resp = api.post("/api/runs", json={"scheme": "default", "target": target})

    assert resp.status_code == 422


def test_run_archive_formats(client: Tuple[TestClient, StubBackend]) -> None:
    api, _backend = client
    payload = {"scheme": "default", "target": "example.org"}

    zipped = api.post("/api/runs/archive", json=payload)
    assert zipped.status_code == 200
    assert zipped.headers["content-type"] == "application/zip"
    assert zip_unpack(zipped.content) == "PING example.org\n"

    deflated = api.post("/api/runs/archive", params={"format": "deflate"}, json=payload)
    assert deflated.status_code == 200
    assert decompress(deflated.content) == "PING example.org\n"


def test_extract_archive(client: Tuple[TestClient, StubBackend]) -> None:
    api, _backend = client

    resp = api.post("/api/archives/extract", content=zip_pack("one\ntwo"))
    assert resp.status_code == 200
    assert resp.json() == {"output": "one\ntwo\n"}

    resp = api.post("/api/archives/extract", params={"format": "deflate"}, content=compress("raw"))
    assert resp.status_code == 200
    assert resp.json() == {"output": "raw"}


def test_extract_rejects_bad_archive(client: Tuple[TestClient, StubBackend]) -> None:
    api, _backend = client

    resp = api.post("/api/archives/extract", content=b"nope")

    assert resp.status_code == 422


def test_extract_rejects_corrupt_entry(client: Tuple[TestClient, StubBackend]) -> None:
    api, _backend = client
    payload = bytearray(zip_pack("hello world " * 50))
    payload[40] ^= 0xFF

    resp = api.post("/api/archives/extract", content=bytes(payload))

    assert resp.status_code == 422


def test_extract_tolerates_invalid_utf8(client: Tuple[TestClient, StubBackend]) -> None:
    api, _backend = client
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -zlib.MAX_WBITS)
    payload = compressor.compress(b"ok \xff\xfe bytes") + compressor.flush()

    resp = api.post("/api/archives/extract", params={"format": "deflate"}, content=payload)

    assert resp.status_code == 200
    assert resp.json() == {"output": "ok \ufffd\ufffd bytes"}


def test_image_exists_and_pull(client: Tuple[TestClient, StubBackend]) -> None:
    api, backend = client

    resp = api.get("/api/images/exists", params={"reference": "busybox:latest"})
    assert resp.json() == {"reference": "busybox:latest", "exists": False}

    resp = api.post("/api/images/pull", json={"images": ["busybox", "private/tool:1.0"]})
    assert resp.status_code == 200
    assert resp.json() == {
        "results": [
            {"reference": "busybox:latest", "pulled": True, "error": None},
            {"reference": "private/tool:1.0", "pulled": False, "error": "unauthorized"},
        ]
    }
    assert backend.pulled == ["busybox:latest"]

    resp = api.get("/api/images/exists", params={"reference": "busybox:latest"})
    assert resp.json()["exists"] is True


def test_pull_requires_images(client: Tuple[TestClient, StubBackend]) -> None:
    api, _backend = client

    assert api.post("/api/images/pull", json={"images": []}).status_code == 422

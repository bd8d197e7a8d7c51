from __future__ import annotations

import enum
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

import docker
from docker.errors import APIError, NotFound

LOGGER = logging.getLogger("dockerize.docker")

# One demultiplexed attach frame: (stdout chunk, stderr chunk), either may be None.
Frame = Tuple[Optional[bytes], Optional[bytes]]


class StartResult(str, enum.Enum):
    started = "started"
    already_running = "already_running"


class DockerBackend:
    """Daemon operations the orchestrator relies on. All methods block."""

    def list_images(self, reference: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def pull_image(self, repository: str, tag: Optional[str]) -> Iterator[Dict[str, Any]]:
        raise NotImplementedError

    def create_container(self, image: str, command: List[str]) -> Optional[str]:
        raise NotImplementedError

    def attach_container(self, container_id: str) -> Iterator[Frame]:
        raise NotImplementedError

    def start_container(self, container_id: str) -> StartResult:
        raise NotImplementedError

    def remove_container(self, container_id: str, force: bool = True) -> None:
        raise NotImplementedError


class DockerSDKBackend(DockerBackend):
    """DockerBackend over the low-level API client of the Docker SDK."""

    def __init__(self, client: Optional[docker.DockerClient] = None) -> None:
        self._client = client or docker.from_env()
        self._api = self._client.api

    def list_images(self, reference: str) -> List[Dict[str, Any]]:
        return self._api.images(filters={"reference": reference}) or []

    def pull_image(self, repository: str, tag: Optional[str]) -> Iterator[Dict[str, Any]]:
        return self._api.pull(repository, tag=tag, stream=True, decode=True)

    def create_container(self, image: str, command: List[str]) -> Optional[str]:
        # No TTY so the attach stream stays multiplexed and can be split.
        response = self._api.create_container(
            image,
            command=command,
            stdin_open=False,
            tty=False,
            detach=False,
        )
        return (response or {}).get("Id")

    def attach_container(self, container_id: str) -> Iterator[Frame]:
        return self._api.attach(
            container_id,
            stdout=True,
            stderr=True,
            stream=True,
            logs=True,
            demux=True,
        )

    def start_container(self, container_id: str) -> StartResult:
        state = (self._api.inspect_container(container_id) or {}).get("State") or {}
        if state.get("Running"):
            return StartResult.already_running
        self._api.start(container_id)
        return StartResult.started

    def remove_container(self, container_id: str, force: bool = True) -> None:
        try:
            self._api.remove_container(container_id, force=force)
        except NotFound:
            LOGGER.debug("Container %s already gone", container_id)
        except APIError as exc:
            LOGGER.warning("Failed to remove container %s: %s", container_id, exc)

from __future__ import annotations

import asyncio
import functools
import io
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Iterable, Iterator, List, Optional, TypeVar

from dockerize.services.docker_backend import DockerBackend, DockerSDKBackend, Frame, StartResult
from dockerize.services.schemes import SchemeStore, get_scheme_store
from dockerize.settings import get_settings

LOGGER = logging.getLogger("dockerize.orchestrator")

T = TypeVar("T")


class ImageFetchError(RuntimeError):
    """The daemon reported an error in the middle of an image pull."""


@dataclass(frozen=True)
class ImageReference:
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @classmethod
    def parse(cls, reference: str, default_tag: str) -> "ImageReference":
        """Split ``reference`` into repository and tag or digest.

        A reference that names neither a tag nor a digest gets ``default_tag``.
        A colon before the last slash belongs to a registry port, not a tag.
        """
        value = reference.strip()
        if "@" in value:
            repository, digest = value.split("@", 1)
            return cls(repository=repository, digest=digest)
        colon = value.rfind(":")
        if colon > value.rfind("/"):
            return cls(repository=value[:colon], tag=value[colon + 1 :])
        return cls(repository=value, tag=default_tag)

    @property
    def pull_tag(self) -> Optional[str]:
        return self.digest or self.tag

    def __str__(self) -> str:
        if self.digest:
            return f"{self.repository}@{self.digest}"
        return f"{self.repository}:{self.tag}"


@dataclass(frozen=True)
class PullOutcome:
    reference: str
    pulled: bool
    error: Optional[str] = None


class CapturedOutput:
    """Separate stdout/stderr sinks filled from a demultiplexed attach stream."""

    def __init__(self) -> None:
        self.stdout = io.BytesIO()
        self.stderr = io.BytesIO()

    def consume(self, frames: Iterable[Frame]) -> None:
        for out, err in frames:
            if out:
                self.stdout.write(out)
            if err:
                self.stderr.write(err)

    @staticmethod
    def _lines(sink: io.BytesIO) -> Iterator[str]:
        # Universal newlines: only \n, \r and \r\n end a line.
        text = io.StringIO(sink.getvalue().decode("utf-8", errors="replace"), newline=None)
        for line in text:
            line = line.rstrip("\n")
            if line:
                yield line

    def stdout_lines(self) -> Iterator[str]:
        return self._lines(self.stdout)

    def stderr_lines(self) -> Iterator[str]:
        return self._lines(self.stderr)


def _discard_stream(future: "asyncio.Future[None]") -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        LOGGER.debug("Abandoned output stream ended with %s", exc)


class ContainerRunOrchestrator:
    """Run one-shot containers described by schemes and collect their stdout."""

    def __init__(
        self,
        schemes: Optional[SchemeStore] = None,
        docker_backend: Optional[DockerBackend] = None,
        *,
        default_tag: Optional[str] = None,
    ) -> None:
        self._schemes = schemes or get_scheme_store()
        self._docker_backend = docker_backend or DockerSDKBackend()
        self._default_tag = default_tag or get_settings().default_tag

    @property
    def schemes(self) -> SchemeStore:
        return self._schemes

    async def _call(self, func: Callable[..., T], *args: Any, executor: Optional[Executor] = None) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, functools.partial(func, *args))

    def reference(self, image: str) -> ImageReference:
        return ImageReference.parse(image, self._default_tag)

    # ------------------------------------------------------------------ images
    async def image_exists(self, reference: str) -> bool:
        images = await self._call(self._docker_backend.list_images, reference)
        return bool(images)

    async def pull_images(self, references: Iterable[str]) -> List[PullOutcome]:
        """Pull every reference concurrently; failures are logged, never raised."""
        images = [self.reference(reference) for reference in references]
        if not images:
            return []
        # One thread per image so every pull is in flight at once.
        executor = ThreadPoolExecutor(max_workers=len(images), thread_name_prefix="dockerize-pull")
        try:
            return list(await asyncio.gather(*(self._pull_one(image, executor) for image in images)))
        finally:
            executor.shutdown(wait=False)

    async def _pull_one(self, image: ImageReference, executor: Executor) -> PullOutcome:
        try:
            await self._call(self._consume_pull, image, executor=executor)
        except Exception as exc:
            LOGGER.error("Failed to pull image %s: %s", image, exc)
            return PullOutcome(reference=str(image), pulled=False, error=str(exc))
        LOGGER.info("Pulled image %s", image)
        return PullOutcome(reference=str(image), pulled=True)

    def _consume_pull(self, image: ImageReference) -> None:
        for event in self._docker_backend.pull_image(image.repository, image.pull_tag):
            if not isinstance(event, dict):
                continue
            if event.get("error"):
                raise ImageFetchError(str(event["error"]))
            message = " ".join(str(part) for part in (event.get("status"), event.get("progress")) if part)
            LOGGER.info("%s : %s", event.get("id", image), message)

    # ------------------------------------------------------------------ runs
    @asynccontextmanager
    async def _container(self, container_id: str) -> AsyncIterator[str]:
        try:
            yield container_id
        finally:
            await self._call(self._docker_backend.remove_container, container_id, True)
            LOGGER.debug("Removed container %s", container_id)

    def _start_copy(
        self, container_id: str, captured: CapturedOutput, frames: Iterable[Frame]
    ) -> "asyncio.Future[None]":
        """Copy ``frames`` into ``captured`` on a dedicated thread for the container's lifetime."""
        loop = asyncio.get_running_loop()
        done: "asyncio.Future[None]" = loop.create_future()

        def _settle(error: Optional[BaseException]) -> None:
            if done.cancelled():
                return
            if error is None:
                done.set_result(None)
            else:
                done.set_exception(error)

        def _copy() -> None:
            error: Optional[BaseException] = None
            try:
                captured.consume(frames)
            except Exception as exc:
                error = exc
            try:
                loop.call_soon_threadsafe(_settle, error)
            except RuntimeError:
                LOGGER.debug("Event loop closed before output of %s was collected", container_id)

        thread = threading.Thread(target=_copy, name=f"dockerize-stream-{container_id[:12]}", daemon=True)
        thread.start()
        return done

    async def _stream_output(self, container_id: str) -> Optional[CapturedOutput]:
        captured = CapturedOutput()
        # Attach before start so nothing written at startup is lost.
        frames = await self._call(self._docker_backend.attach_container, container_id)
        streaming = self._start_copy(container_id, captured, frames)
        try:
            result = await self._call(self._docker_backend.start_container, container_id)
        except BaseException:
            streaming.add_done_callback(_discard_stream)
            raise
        if result is StartResult.already_running:
            LOGGER.error("Container %s has already started; abandoning run", container_id)
            streaming.add_done_callback(_discard_stream)
            return None
        await streaming
        return captured

    async def run_with_output(self, scheme_id: str, target: str) -> str:
        """Run ``scheme_id`` against ``target`` and return the non-empty stdout lines.

        The container is force-removed on every exit path once it has an id.
        Returns an empty string when creation yields no id or the container
        was already running.
        """
        scheme = self._schemes.resolve(scheme_id)
        command = scheme.render(target)
        image = str(self.reference(scheme.image))

        if not await self.image_exists(image):
            LOGGER.warning("Image %s not found locally, downloading...", image)
            await self.pull_images([image])

        container_id = await self._call(self._docker_backend.create_container, image, command)
        if not container_id:
            LOGGER.error("Container creation for %s returned no id", image)
            return ""
        LOGGER.info("Created container %s from %s: %s", container_id, image, " ".join(command))

        async with self._container(container_id):
            captured = await self._stream_output(container_id)
        if captured is None:
            return ""

        for line in captured.stderr_lines():
            LOGGER.error("%s", line)
        return "".join(f"{line}\n" for line in captured.stdout_lines())


_orchestrator: Optional[ContainerRunOrchestrator] = None


def get_orchestrator() -> ContainerRunOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ContainerRunOrchestrator()
    return _orchestrator

"""Docker Engine client over the local unix socket.

Speaks the Engine HTTP API directly with httpx. Only the handful of calls
the boot pipeline and the sync engine need are implemented: container
listing, health inspection, exec, archive copy and attach.
"""

import logging
import struct
from collections.abc import AsyncIterator
from enum import IntEnum
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_SOCKET = "/var/run/docker.sock"
API_BASE_URL = "http://docker"
MULTIPLEXED_CONTENT_TYPE = "application/vnd.docker.multiplexed-stream"

# 1 byte stream id, 3 bytes padding, 4 bytes big-endian payload size
FRAME_HEADER = struct.Struct(">BxxxL")


class StreamKind(IntEnum):
    """Stream id of a multiplexed frame."""

    STDIN = 0
    STDOUT = 1
    STDERR = 2


class DockerAPIError(Exception):
    """The Engine API returned an error status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"Docker API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


async def demultiplex(chunks: AsyncIterator[bytes]) -> AsyncIterator[tuple[StreamKind, bytes]]:
    """Split an 8-byte-framed Engine stream into tagged payloads.

    Frames may be split across network chunks; partial frames are buffered.

    Args:
        chunks: Raw response body chunks

    Yields:
        Tuples of (stream kind, payload).
    """
    buffer = b""
    async for chunk in chunks:
        buffer += chunk
        while len(buffer) >= FRAME_HEADER.size:
            kind, size = FRAME_HEADER.unpack_from(buffer)
            end = FRAME_HEADER.size + size
            if len(buffer) < end:
                break
            yield StreamKind(kind), buffer[FRAME_HEADER.size : end]
            buffer = buffer[end:]
    if buffer:
        logger.debug(f"Discarding {len(buffer)} trailing bytes of a partial frame")


class DockerClient:
    """Minimal async Docker Engine client."""

    def __init__(
        self,
        socket_path: str = DEFAULT_SOCKET,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        """Initialize the client.

        Args:
            socket_path: Path to the Docker daemon socket
            transport: Override transport (tests use httpx.MockTransport)
            timeout: Default timeout for non-streaming requests
        """
        self.socket_path = socket_path
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=API_BASE_URL,
            transport=transport or httpx.AsyncHTTPTransport(uds=socket_path),
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "DockerClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @staticmethod
    def _check(response: httpx.Response) -> None:
        if response.status_code >= 400:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise DockerAPIError(response.status_code, message)

    async def running_containers(self) -> dict[str, str]:
        """Map running container names to their ids.

        Returns:
            Dict of name (without the leading slash) to container id.
        """
        response = await self._client.get("/containers/json")
        self._check(response)
        containers: dict[str, str] = {}
        for container in response.json():
            if container.get("State") != "running":
                continue
            for name in container.get("Names") or []:
                containers[name.lstrip("/")] = container["Id"]
        return containers

    async def inspect(self, container_id: str, timeout: float | None = None) -> dict[str, Any]:
        """Inspect a container.

        Args:
            container_id: Container id or name
            timeout: Request timeout, defaults to the client timeout

        Returns:
            Raw inspect document.
        """
        response = await self._client.get(
            f"/containers/{container_id}/json",
            timeout=timeout if timeout is not None else self.timeout,
        )
        self._check(response)
        return response.json()

    async def health_status(self, container_id: str, timeout: float | None = None) -> str:
        """Read the health status of a container.

        Returns:
            "starting", "healthy", "unhealthy", or "none" when the container
            has no health check configured.
        """
        data = await self.inspect(container_id, timeout=timeout)
        health = (data.get("State") or {}).get("Health")
        if not health:
            return "none"
        return health.get("Status", "none")

    async def exec_create(
        self,
        container_id: str,
        cmd: list[str],
        tty: bool = True,
        privileged: bool = True,
    ) -> str:
        """Create an exec session inside a container.

        Returns:
            Exec session id.
        """
        response = await self._client.post(
            f"/containers/{container_id}/exec",
            json={
                "AttachStdout": True,
                "AttachStderr": True,
                "Tty": tty,
                "Privileged": privileged,
                "Cmd": cmd,
            },
        )
        self._check(response)
        exec_id = response.json()["Id"]
        logger.debug(f"Created exec {exec_id} in {container_id}: {cmd}")
        return exec_id

    async def exec_start(
        self, exec_id: str, tty: bool = True
    ) -> AsyncIterator[tuple[StreamKind, bytes]]:
        """Start an exec session and stream its output until it exits.

        With a tty the daemon sends one raw stream, which is all stdout.
        Without one it sends framed stdout and stderr.

        Yields:
            Tuples of (stream kind, payload).
        """
        async with self._client.stream(
            "POST",
            f"/exec/{exec_id}/start",
            json={"Detach": False, "Tty": tty},
            timeout=None,
        ) as stream:
            if stream.status_code >= 400:
                await stream.aread()
                self._check(stream)
            content_type = stream.headers.get("content-type", "")
            if content_type.startswith(MULTIPLEXED_CONTENT_TYPE):
                async for kind, payload in demultiplex(stream.aiter_bytes()):
                    yield kind, payload
            else:
                async for chunk in stream.aiter_bytes():
                    yield StreamKind.STDOUT, chunk

    async def exec_exit_code(self, exec_id: str) -> int | None:
        """Read the exit code of a finished exec session.

        Returns:
            Exit code, or None while the command is still running.
        """
        response = await self._client.get(f"/exec/{exec_id}/json")
        self._check(response)
        data = response.json()
        if data.get("Running"):
            return None
        return data.get("ExitCode")

    async def exec_stream(
        self,
        container_id: str,
        cmd: list[str],
        tty: bool = True,
        privileged: bool = True,
    ) -> AsyncIterator[tuple[StreamKind, bytes]]:
        """Run a command inside a container and stream its output.

        Args:
            container_id: Target container id
            cmd: Command argv
            tty: Allocate a pseudo-terminal
            privileged: Run the exec session privileged

        Yields:
            Tuples of (stream kind, payload).
        """
        exec_id = await self.exec_create(container_id, cmd, tty=tty, privileged=privileged)
        async for kind, payload in self.exec_start(exec_id, tty=tty):
            yield kind, payload

    async def get_archive(self, container_id: str, path: str) -> bytes:
        """Copy a path out of a container as a tar archive."""
        response = await self._client.get(
            f"/containers/{container_id}/archive", params={"path": path}
        )
        self._check(response)
        return response.content

    async def put_archive(self, container_id: str, directory: str, data: bytes) -> None:
        """Extract a tar archive into a directory of a container."""
        response = await self._client.put(
            f"/containers/{container_id}/archive",
            params={"path": directory},
            content=data,
            headers={"Content-Type": "application/x-tar"},
        )
        self._check(response)

    async def attach(self, container_id: str) -> AsyncIterator[bytes]:
        """Follow a container's output from now on.

        Yields:
            Output chunks, stdout and stderr interleaved.
        """
        async with self._client.stream(
            "POST",
            f"/containers/{container_id}/attach",
            params={"stream": 1, "stdout": 1, "stderr": 1, "logs": 0},
            timeout=None,
        ) as stream:
            if stream.status_code >= 400:
                await stream.aread()
                self._check(stream)
            content_type = stream.headers.get("content-type", "")
            if content_type.startswith(MULTIPLEXED_CONTENT_TYPE):
                async for _, payload in demultiplex(stream.aiter_bytes()):
                    yield payload
            else:
                async for chunk in stream.aiter_bytes():
                    yield chunk

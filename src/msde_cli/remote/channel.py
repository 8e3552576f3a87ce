"""Remote command channel into running containers.

Every remote call is a single exec session with a pseudo-terminal attached.
The MSDE release binary prints nothing at all without one.
"""

from __future__ import annotations

from collections.abc import Sequence

import httpx

from ..errors import MsdeError, ProcessFailure, ProtocolViolation, container_not_running
from ..shared.containers import PRIMARY_SERVICE
from ..shared.logging import get_logger
from .runtime import DockerAPIError, DockerClient, StreamKind

logger = get_logger(__name__)

# Release binary of the game server inside the primary container
MSDE_BINARY = "/usr/local/bin/merigo/msde/bin/msde"

# Everything a single remote call can fail with
REMOTE_ERRORS = (MsdeError, DockerAPIError, httpx.HTTPError)


def rpc_command(expr: str) -> list[str]:
    """Build the argv that evaluates an expression on the running node."""
    return [MSDE_BINARY, "rpc", expr]


class RemoteChannel:
    """Execute commands inside containers and collect their output."""

    def __init__(self, runtime: DockerClient):
        self.runtime = runtime

    async def container_id(self, name: str) -> str:
        """Resolve a running container's id by name.

        Raises:
            ContainerNotRunning: No running container has that name.
        """
        containers = await self.runtime.running_containers()
        try:
            return containers[name]
        except KeyError:
            raise container_not_running(name) from None

    async def exec(
        self,
        container_id: str,
        command: Sequence[str],
        check: bool = False,
    ) -> bytes:
        """Run a command and return everything it wrote to stdout.

        Args:
            container_id: Target container id
            command: Command argv
            check: Fail on a nonzero exit code

        Returns:
            Raw output bytes, undecoded.

        Raises:
            ProtocolViolation: The stream carried a stderr chunk.
            ProcessFailure: check is set and the command exited nonzero.
        """
        argv = list(command)
        exec_id = await self.runtime.exec_create(container_id, argv, tty=True)
        output = bytearray()
        async for kind, chunk in self.runtime.exec_start(exec_id, tty=True):
            if kind is StreamKind.STDOUT:
                output.extend(chunk)
            else:
                raise ProtocolViolation(
                    message=f"Unexpected {kind.name.lower()} output from remote command",
                    data={"command": argv, "chunk": chunk.decode(errors="replace")},
                )

        if check:
            exit_code = await self.runtime.exec_exit_code(exec_id)
            if exit_code:
                raise ProcessFailure(
                    message=f"`{' '.join(argv)}` exited with code {exit_code}",
                    exit_code=exit_code,
                    data={"command": argv, "output": output.decode(errors="replace")},
                )
        return bytes(output)

    async def exec_in(self, name: str, command: Sequence[str], check: bool = True) -> bytes:
        """Run a command in a container addressed by name.

        A nonzero exit raises ProcessFailure unless check is off.
        """
        return await self.exec(await self.container_id(name), command, check=check)

    async def rpc(self, expr: str) -> bytes:
        """Evaluate an expression on the game server node.

        The result is read from the output; the exit code is not checked.

        Args:
            expr: Expression text passed to `msde rpc`

        Returns:
            Raw output bytes.
        """
        logger.debug("remote call", expr=expr if len(expr) < 200 else expr[:200] + "...")
        return await self.exec_in(PRIMARY_SERVICE, rpc_command(expr), check=False)

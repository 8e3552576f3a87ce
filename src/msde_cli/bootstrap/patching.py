"""Feature toggles in the game server's runtime configuration.

The configuration file inside the primary container carries one toggle pair
per optional feature. It is copied out as a tar archive, patched by exact
substring replacement and copied back in.
"""

from __future__ import annotations

import io
import tarfile
from collections.abc import Collection
from dataclasses import dataclass
from typing import Protocol

import httpx

from ..errors import MsdeError
from ..remote.runtime import DockerAPIError, DockerClient
from ..shared.logging import get_logger
from .features import Feature

logger = get_logger(__name__)

MSDE_CONFIG_PATH = "/usr/local/bin/merigo/msde/etc/msde.config"


class ConfigPatcher(Protocol):
    """Rewrites configuration text for a feature set."""

    def patch(self, text: str, features: Collection[Feature]) -> str: ...


@dataclass(frozen=True)
class Toggle:
    """Disabled and enabled spellings of one feature switch."""

    feature: Feature
    disabled: str
    enabled: str


DEFAULT_TOGGLES = (
    Toggle(Feature.OTEL, "{otel_enabled, false}", "{otel_enabled, true}"),
    Toggle(Feature.METRICS, "{prometheus_enabled, false}", "{prometheus_enabled, true}"),
    Toggle(Feature.WEB3, "{web3_enabled, false}", "{web3_enabled, true}"),
)


class TogglePatcher:
    """Flip toggle pairs by exact substring replacement."""

    def __init__(self, toggles: tuple[Toggle, ...] = DEFAULT_TOGGLES):
        self.toggles = toggles

    def patch(self, text: str, features: Collection[Feature]) -> str:
        for toggle in self.toggles:
            if toggle.feature in features:
                text = text.replace(toggle.disabled, toggle.enabled)
            else:
                text = text.replace(toggle.enabled, toggle.disabled)
        return text


def read_single_file(archive: bytes) -> tuple[tarfile.TarInfo, bytes]:
    """Extract the one regular file of a copy-out archive."""
    with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
        for member in tar.getmembers():
            if member.isfile():
                f = tar.extractfile(member)
                if f is not None:
                    return member, f.read()
    raise ValueError("Archive does not contain a regular file")


def write_single_file(info: tarfile.TarInfo, content: bytes) -> bytes:
    """Build a copy-in archive holding one file, keeping its metadata."""
    info.size = len(content)
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


async def patch_container_config(
    runtime: DockerClient,
    container_id: str,
    features: Collection[Feature],
    patcher: ConfigPatcher | None = None,
    path: str = MSDE_CONFIG_PATH,
) -> bool:
    """Apply feature toggles to the configuration file in a container.

    Args:
        runtime: Container runtime client
        container_id: Primary container id
        features: Active features
        patcher: Text patcher, TogglePatcher by default
        path: Configuration file path inside the container

    Returns:
        True if the patched file was written back.

    Raises:
        MsdeError: The file could not be read out of the container.
    """
    patcher = patcher or TogglePatcher()
    try:
        info, content = read_single_file(await runtime.get_archive(container_id, path))
    except (DockerAPIError, httpx.HTTPError, tarfile.TarError, ValueError) as e:
        raise MsdeError(
            message=f"Could not read {path} from the game server container: {e}",
            data={"path": path},
        ) from e

    text = content.decode()
    patched = patcher.patch(text, features)
    if patched == text:
        logger.debug("configuration already matches features", path=path)

    directory = path.rsplit("/", 1)[0] or "/"
    try:
        await runtime.put_archive(container_id, directory, write_single_file(info, patched.encode()))
    except (DockerAPIError, httpx.HTTPError) as e:
        logger.warning("failed to write configuration back", path=path, error=str(e))
        return False
    return True

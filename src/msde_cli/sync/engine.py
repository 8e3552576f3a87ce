"""Game import and synchronization against the running game server.

The import runs in phases: merge local and remote stages, import each game,
request a sync for every launched stage, poll the sync jobs with exponential
backoff, then start every launched stage. Individual stage failures become
warnings; the engine always completes a pass over every stage.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from ..errors import ParseError, RemoteTerminalFailure, RemoteTransientFailure
from ..remote.channel import REMOTE_ERRORS, RemoteChannel
from ..remote.decoder import decode, decode_string, fetch_value
from ..remote.grammar import Err, parse_tuple
from ..shared.containers import PRIMARY_SERVICE
from ..shared.logging import get_logger
from ..utils import ExponentialBackoff
from .stages import StageConfig, Stages, merge_stages, parse_remote_stages

logger = get_logger(__name__)

CONFIG_EXPR = "Game.get_config() |> Jason.encode!()"

FINISHED_STATUS = "Finished"
TERMINAL_STATUSES = frozenset({"Verify Error", "Tuning Error", "Scripts Error"})
# Reported while the job is still being set up; only fatal once it persists
# into the backoff phase
STALLED_STATUS = "Setting Up script File System"

ALREADY_RUNNING = "game_running"
DEFAULT_MAX_IN_FLIGHT = 16
SOME_STAGES_FAILED = "some stages failed, see warnings above"


def import_expr(stages: Stages) -> str:
    return f'Game.import_config(~S"""{stages.to_json()}""")'


def sync_expr(guid: str, suid: str) -> str:
    return f'Game.sync("{guid}", "{suid}")'


def status_expr(job_id: str) -> str:
    return f'Game.sync_status("{job_id}")'


def start_expr(guid: str, suid: str) -> str:
    return f'Game.start("{guid}", "{suid}")'


class JobState(Enum):
    """Lifecycle state of a sync job."""

    REQUESTED = "requested"
    PENDING = "pending"
    FINISHED = "finished"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass
class SyncJob:
    """One stage's sync request as it moves through polling."""

    guid: str
    suid: str
    job_id: str | None = None
    state: JobState = JobState.REQUESTED
    status: str = ""
    polls: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return (self.guid, self.suid)


@dataclass
class SyncReport:
    """Outcome of one import run."""

    imported: list[str] = field(default_factory=list)
    failed_imports: list[str] = field(default_factory=list)
    failed_requests: list[tuple[str, str]] = field(default_factory=list)
    finished: list[SyncJob] = field(default_factory=list)
    failed_jobs: list[SyncJob] = field(default_factory=list)
    abandoned: list[SyncJob] = field(default_factory=list)
    started: list[tuple[str, str]] = field(default_factory=list)
    failed_starts: list[tuple[str, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when every stage made it through every phase."""
        return not (
            self.failed_imports
            or self.failed_requests
            or self.failed_jobs
            or self.abandoned
            or self.failed_starts
        )


class SyncEngine:
    """Drives the merge, import, sync, poll and start phases."""

    def __init__(
        self,
        channel: RemoteChannel,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        backoff: ExponentialBackoff | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the engine.

        Args:
            channel: Remote channel to the game server
            max_in_flight: Concurrent sync requests and status polls
            backoff: Poll schedule after the first round
            sleep: Sleep function used between poll rounds
        """
        self.channel = channel
        self.max_in_flight = max_in_flight
        self.backoff = backoff or ExponentialBackoff()
        self._sleep = sleep

    def _warn(self, report: SyncReport, message: str, **kw) -> None:
        report.warnings.append(message)
        logger.warning(message, **kw)

    async def fetch_remote_stages(self) -> list[Stages]:
        """Read the stage configuration the game server already holds."""
        text = await fetch_value(self.channel, CONFIG_EXPR)
        return parse_remote_stages(text)

    async def import_games(
        self,
        local_stages: Iterable[Stages],
        remote_stages: Iterable[Stages] | None = None,
    ) -> SyncReport:
        """Import local games and bring every launched stage up.

        Args:
            local_stages: Stages from the project directory
            remote_stages: Stages known to the server; fetched when omitted

        Returns:
            SyncReport of the run.

        Raises:
            ContainerNotRunning: The game server is not running.
        """
        await self.channel.container_id(PRIMARY_SERVICE)
        if remote_stages is None:
            remote_stages = await self.fetch_remote_stages()

        report = SyncReport()
        merged = merge_stages(local_stages, remote_stages)
        logger.info("merged stages", games=len(merged))

        for group in merged:
            await self._import(group, report)

        launched = [stage for group in merged for stage in group.launched]
        jobs = await self._request_syncs(launched, report)
        await self._poll_until_settled(jobs, report)

        for stage in launched:
            await self._start(stage, report)

        if not report.ok:
            logger.warning(SOME_STAGES_FAILED)
        return report

    async def _import(self, group: Stages, report: SyncReport) -> None:
        # Must stay sequential, concurrent imports corrupt naming on the node
        try:
            text = decode(await self.channel.rpc(import_expr(group)))
        except REMOTE_ERRORS as e:
            report.failed_imports.append(group.guid)
            self._warn(report, f"Failed to import game {group.guid}: {e}", guid=group.guid)
            return
        if text.rstrip().endswith(":ok"):
            report.imported.append(group.guid)
            logger.info("imported game", guid=group.guid, stages=len(group.stages))
        else:
            report.failed_imports.append(group.guid)
            self._warn(
                report,
                f"Game {group.guid} was not imported: {text}",
                guid=group.guid,
            )

    async def _request_syncs(self, stages: list[StageConfig], report: SyncReport) -> list[SyncJob]:
        semaphore = asyncio.Semaphore(self.max_in_flight)

        async def request(stage: StageConfig) -> SyncJob | None:
            job = SyncJob(guid=stage.guid, suid=stage.suid)
            async with semaphore:
                try:
                    result = parse_tuple(decode(await self.channel.rpc(sync_expr(*job.key))))
                except REMOTE_ERRORS as e:
                    report.failed_requests.append(job.key)
                    self._warn(report, f"Sync request for stage {stage.suid} failed: {e}")
                    return None
            if isinstance(result, Err):
                report.failed_requests.append(job.key)
                self._warn(
                    report,
                    f"Sync request for stage {stage.suid} rejected: {result.atom}",
                    guid=stage.guid,
                )
                return None
            job.job_id = str(result.value)
            job.state = JobState.PENDING
            logger.debug("sync requested", suid=stage.suid, job=job.job_id)
            return job

        results = await asyncio.gather(*(request(stage) for stage in stages))
        return [job for job in results if job is not None]

    async def _poll_until_settled(self, jobs: list[SyncJob], report: SyncReport) -> None:
        pending = await self._poll_round(jobs, report, in_backoff=False)
        for interval in self.backoff.intervals():
            if not pending:
                break
            await self._sleep(interval)
            pending = await self._poll_round(pending, report, in_backoff=True)

        for job in pending:
            job.state = JobState.UNKNOWN
            report.abandoned.append(job)
            self._warn(
                report,
                f"Gave up waiting for stage {job.suid} to sync (last status: {job.status or 'none'})",
                job=job.job_id,
            )

    async def _poll_round(
        self, jobs: list[SyncJob], report: SyncReport, in_backoff: bool
    ) -> list[SyncJob]:
        """Poll every job once and return those still pending."""
        semaphore = asyncio.Semaphore(self.max_in_flight)

        async def poll(job: SyncJob) -> bool:
            async with semaphore:
                try:
                    job.status = decode_string(await self.channel.rpc(status_expr(job.job_id)))
                except REMOTE_ERRORS as e:
                    logger.warning("status poll failed", job=job.job_id, error=str(e))
                    return True
            job.polls += 1
            try:
                self._classify(job, in_backoff)
            except RemoteTransientFailure:
                return True
            except RemoteTerminalFailure as e:
                job.state = JobState.FAILED
                report.failed_jobs.append(job)
                logger.error("stage sync failed", suid=job.suid, status=job.status)
                report.warnings.append(str(e))
                return False
            job.state = JobState.FINISHED
            report.finished.append(job)
            logger.info("stage synced", suid=job.suid, polls=job.polls)
            return False

        still_pending = await asyncio.gather(*(poll(job) for job in jobs))
        return [job for job, pending in zip(jobs, still_pending) if pending]

    @staticmethod
    def _classify(job: SyncJob, in_backoff: bool) -> None:
        if job.status == FINISHED_STATUS:
            return
        if job.status in TERMINAL_STATUSES or (in_backoff and job.status == STALLED_STATUS):
            raise RemoteTerminalFailure(
                message=f"Stage {job.suid} failed to sync: {job.status}",
                data={"job": job.job_id, "status": job.status},
            )
        raise RemoteTransientFailure(
            message=f"Stage {job.suid} still syncing: {job.status}",
            data={"job": job.job_id, "status": job.status},
        )

    async def _start(self, stage: StageConfig, report: SyncReport) -> None:
        key = (stage.guid, stage.suid)
        try:
            text = decode(await self.channel.rpc(start_expr(*key)))
        except REMOTE_ERRORS as e:
            report.failed_starts.append(key)
            self._warn(report, f"Failed to start stage {stage.suid}: {e}")
            return

        if self._is_started(text):
            report.started.append(key)
            logger.info("stage started", guid=stage.guid, suid=stage.suid)
        else:
            report.failed_starts.append(key)
            self._warn(report, f"Stage {stage.suid} did not start: {text}", guid=stage.guid)

    @staticmethod
    def _is_started(text: str) -> bool:
        try:
            result = parse_tuple(text)
        except ParseError:
            result = None
        if isinstance(result, Err) and result.atom == ALREADY_RUNNING:
            return True
        return text.rstrip().endswith(":ok")

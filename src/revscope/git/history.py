"""Streamed ``git log`` file histories.

:class:`GitFileHistory` is the git driver of a
:class:`~revscope.vcs.history.HistoryStream`. A regular query runs two
``git log`` jobs over the same range and flags, one with ``--name-status``
and one with ``--numstat``, and pairs their per-commit chunks. Line tracing
(``-L``) runs a single job whose chunks carry a unified diff.

Commits whose chunk is incomplete or inconsistent are re-queried with
``git show`` through the adapter's :class:`~revscope.runners.JobCoordinator`.
A commit that still cannot be parsed is skipped and counted on the stream.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from revscope.exceptions import OutputValidationError
from revscope.git.rev import null_tree
from revscope.git.stat_parser import (
    LOG_PRETTY_FORMAT,
    CommitRecord,
    parse_commit_block,
    parse_line_trace_block,
    parse_stat_lines,
)
from revscope.logging import get_logger
from revscope.runners.coordinator import (
    OutputValidator,
    empty_output,
    matching_line_counts,
)
from revscope.runners.job import Job
from revscope.vcs.history import (
    ChunkQueue,
    HistoryStream,
    JobStatus,
    final_status,
    jobs_failed,
    start_chunked_jobs,
)
from revscope.vcs.models import FileEntry, FileKind, LogEntry
from revscope.vcs.rev import Rev

if TYPE_CHECKING:
    from revscope.git.adapter import GitAdapter

__all__ = ["GitFileHistory", "PreparedLogOptions"]

logger = get_logger(__name__)

_Chunk = dict[str, list[str]]


@dataclass(frozen=True)
class PreparedLogOptions:
    """History options after verification, ready to become arguments.

    Attributes:
        rev_range: Verified revision range, None for HEAD.
        base: Right-hand rev of every entry, None for the commit itself.
        path_args: Path filters.
        flags: Rendered ``git log`` flags.
        line_trace: True when ``-L`` ranges are traced.
        follow: True when renames are followed.
    """

    rev_range: str | None
    base: Rev | None
    path_args: tuple[str, ...]
    flags: tuple[str, ...]
    line_trace: bool = False
    follow: bool = False


def _recovery_validator(path_filtered: bool) -> OutputValidator:
    if not path_filtered:
        return matching_line_counts

    def validate(jobs: Sequence[Job]) -> list[int]:
        return sorted(set(matching_line_counts(jobs)) | set(empty_output(jobs)))

    return validate


class GitFileHistory:
    """Drives one history query for a :class:`~revscope.git.adapter.GitAdapter`.

    Args:
        adapter: The owning adapter.
        prepared: Verified options.
        single_file: True when the query targets exactly one file.
        job_factory: Creates jobs; replaced in tests.
    """

    def __init__(
        self,
        adapter: GitAdapter,
        prepared: PreparedLogOptions,
        *,
        single_file: bool,
        job_factory: type[Job] = Job,
    ) -> None:
        self._adapter = adapter
        self._prepared = prepared
        self._single_file = single_file
        self._job_factory = job_factory
        self._old_path: str | None = None

    def start(self) -> HistoryStream:
        """Start the query and return its stream."""
        jobs = self._adapter.config.jobs
        stream = HistoryStream(
            buffer_size=jobs.stream_buffer_size,
            yield_interval_ms=jobs.yield_interval_ms,
        )
        logger.debug(
            "file_history_started",
            rev_range=self._prepared.rev_range,
            paths=list(self._prepared.path_args),
            flags=list(self._prepared.flags),
            single_file=self._single_file,
        )
        if self._prepared.line_trace:
            return stream.start(self._drive_line_trace)
        return stream.start(self._drive)

    # =====================================================================
    # Drivers
    # =====================================================================

    async def _drive(self, stream: HistoryStream) -> tuple[JobStatus, list[str]]:
        p = self._prepared
        range_args = [p.rev_range] if p.rev_range else []
        tail = [*p.flags, "--", *p.path_args]
        spawned = await self._start_jobs(
            stream,
            {
                "namestat": [
                    "log",
                    *range_args,
                    f"--pretty=format:{LOG_PRETTY_FORMAT}",
                    "--date=raw",
                    "--name-status",
                    *tail,
                ],
                "numstat": [
                    "log",
                    *range_args,
                    "--pretty=format:%x00",
                    "--date=raw",
                    "--numstat",
                    *tail,
                ],
            },
        )
        if spawned is None:
            return JobStatus.KILLED, []

        chunks, jobs = spawned
        while (chunk := await chunks.get()) is not None:
            if stream.cancelled or jobs_failed(jobs):
                break
            await self._handle_chunk(stream, chunk)
            await stream.maybe_yield()
        return final_status(stream, jobs)

    async def _drive_line_trace(self, stream: HistoryStream) -> tuple[JobStatus, list[str]]:
        p = self._prepared
        range_args = [p.rev_range] if p.rev_range else []
        spawned = await self._start_jobs(
            stream,
            {
                "trace": [
                    "-P",
                    "log",
                    *range_args,
                    "--color=never",
                    "--no-ext-diff",
                    f"--pretty=format:{LOG_PRETTY_FORMAT}",
                    "--date=raw",
                    *p.flags,
                    "--",
                ],
            },
        )
        if spawned is None:
            return JobStatus.KILLED, []

        chunks, jobs = spawned
        while (chunk := await chunks.get()) is not None:
            if stream.cancelled or jobs_failed(jobs):
                break
            record = parse_line_trace_block(chunk["trace"])
            if record.header is None:
                stream.skip(None, "; ".join(record.errors))
            elif record.files:
                await self._emit(stream, record)
            else:
                logger.debug("line_trace_commit_without_files", commit=record.commit_hash)
            await stream.maybe_yield()
        return final_status(stream, jobs)

    async def _start_jobs(
        self,
        stream: HistoryStream,
        commands: dict[str, list[str]],
    ) -> tuple[ChunkQueue, list[Job]] | None:
        return await start_chunked_jobs(
            stream,
            {key: self._adapter.git_command(*args) for key, args in commands.items()},
            cwd=self._adapter.toplevel,
            grace_period=self._adapter.config.jobs.termination_grace_period,
            job_factory=self._job_factory,
        )

    # =====================================================================
    # Per-commit handling
    # =====================================================================

    async def _handle_chunk(self, stream: HistoryStream, chunk: _Chunk) -> None:
        namestat = chunk.get("namestat")
        numstat = chunk.get("numstat")
        if namestat is None:
            stream.skip(None, "Commit is missing from the name-status output")
            return

        record = parse_commit_block(namestat, numstat)
        if record.header is None:
            stream.skip(None, "; ".join(record.errors))
            return

        if self._needs_recovery(record, numstat is None):
            recovered = await self._recover(stream, record)
            if recovered is None:
                return
            record = recovered

        await self._emit(stream, record)

    def _needs_recovery(self, record: CommitRecord, numstat_missing: bool) -> bool:
        if numstat_missing or not record.valid:
            return True
        if not record.files:
            return record.is_merge or bool(self._prepared.path_args)
        return False

    async def _recover(self, stream: HistoryStream, record: CommitRecord) -> CommitRecord | None:
        """Re-query one commit with ``git show``; None when it was skipped."""
        assert record.header is not None
        commit_hash = record.header.commit.hash
        paths = [self._old_path] if self._old_path else list(self._prepared.path_args)

        show = ["show", "--format="]
        if record.is_merge:
            show.append("--diff-merges=first-parent")
        follow = (
            ["--follow"]
            if self._single_file and self._prepared.follow and len(paths) == 1
            else []
        )
        tail = [*follow, commit_hash, "--", *paths]
        jobs = [
            self._job_factory(
                self._adapter.git_command(*show, kind, *tail),
                cwd=self._adapter.toplevel,
                grace_period=self._adapter.config.jobs.termination_grace_period,
            )
            for kind in ("--name-status", "--numstat")
        ]

        logger.debug("history_commit_recovering", commit=commit_hash, errors=list(record.errors))
        try:
            jobs = await self._adapter.coordinator.run_validated(
                jobs,
                validate=_recovery_validator(bool(paths)),
                on_start=stream.attach_job,
                context="file_history_recovery",
            )
        except OutputValidationError as e:
            stream.skip(commit_hash, e.message)
            return None

        if stream.cancelled:
            return None

        for job in jobs:
            if job.returncode != 0:
                stream.skip(commit_hash, job.stderr_text or f"exit code {job.returncode}")
                return None

        files, errors = parse_stat_lines(jobs[0].stdout, jobs[1].stdout)
        if errors:
            stream.skip(commit_hash, "; ".join(errors))
            return None
        if not files and paths:
            stream.skip(commit_hash, "Commit is missing from history")
            return None

        return CommitRecord(header=record.header, files=tuple(files))

    async def _emit(self, stream: HistoryStream, record: CommitRecord) -> None:
        header = record.header
        assert header is not None
        commit = header.commit
        left = Rev.at_commit(header.left_hash) if header.left_hash else null_tree()
        right = self._prepared.base or Rev.at_commit(header.right_hash)
        path_args = list(self._prepared.path_args)

        files = []
        for parsed in record.files:
            if self._single_file and parsed.oldpath:
                self._old_path = parsed.oldpath
            files.append(
                FileEntry(
                    path=parsed.path,
                    status=parsed.status,
                    revs=(left, right),
                    kind=FileKind.WORKING,
                    oldpath=parsed.oldpath,
                    stats=parsed.stats,
                    commit=commit,
                )
            )

        if files:
            entry = LogEntry(
                commit=commit,
                files=files,
                path_args=path_args,
                single_file=self._single_file,
            )
        else:
            entry = LogEntry.null_entry(commit, path_args, self._single_file)
        await stream.emit(entry)



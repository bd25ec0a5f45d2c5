"""Streamed ``hg log`` file histories.

A single ``hg log`` job with :data:`~revscope.hg.parser.HG_LOG_TEMPLATE`
produces one chunk per changeset. Mercurial reports no per-file line
counts in the log, so entries carry no stats.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from revscope.git.history import PreparedLogOptions
from revscope.git.stat_parser import CommitRecord, ParsedFile
from revscope.hg.parser import HG_LOG_TEMPLATE, parse_log_chunk
from revscope.hg.rev import null_node
from revscope.logging import get_logger
from revscope.runners.job import Job
from revscope.vcs.history import (
    HistoryStream,
    JobStatus,
    final_status,
    jobs_failed,
    start_chunked_jobs,
)
from revscope.vcs.models import FileEntry, FileKind, LogEntry
from revscope.vcs.rev import Rev

if TYPE_CHECKING:
    from revscope.hg.adapter import HgAdapter

__all__ = ["HgFileHistory"]

logger = get_logger(__name__)


class HgFileHistory:
    """Drives one history query for a :class:`~revscope.hg.adapter.HgAdapter`."""

    def __init__(
        self,
        adapter: HgAdapter,
        prepared: PreparedLogOptions,
        *,
        single_file: bool,
        job_factory: type[Job] = Job,
    ) -> None:
        self._adapter = adapter
        self._prepared = prepared
        self._single_file = single_file
        self._renamed_from: list[str] = []
        self._job_factory = job_factory

    def start(self) -> HistoryStream:
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
        return stream.start(self._drive)

    def command(self) -> list[str]:
        p = self._prepared
        range_args = ["--rev", p.rev_range] if p.rev_range else []
        return self._adapter.hg_command(
            "log",
            *range_args,
            "--template",
            HG_LOG_TEMPLATE,
            *p.flags,
            "--",
            *p.path_args,
        )

    async def _drive(self, stream: HistoryStream) -> tuple[JobStatus, list[str]]:
        spawned = await start_chunked_jobs(
            stream,
            {"log": self.command()},
            cwd=self._adapter.toplevel,
            grace_period=self._adapter.config.jobs.termination_grace_period,
            job_factory=self._job_factory,
        )
        if spawned is None:
            return JobStatus.KILLED, []

        chunks, jobs = spawned
        while (chunk := await chunks.get()) is not None:
            if stream.cancelled or jobs_failed(jobs):
                break
            record = parse_log_chunk(chunk["log"])
            if record.header is None:
                stream.skip(None, "; ".join(record.errors))
            elif not record.valid:
                stream.skip(record.commit_hash, "; ".join(record.errors))
            else:
                await self._emit(stream, record)
            await stream.maybe_yield()
        return final_status(stream, jobs)

    def _matches(self, parsed: ParsedFile) -> bool:
        """True if *parsed* falls under the path filters.

        Changeset templates list every file of the changeset, unlike
        ``git log --name-status``.

        Rename sources seen while following a file are matched as well.
        """
        prefixes = [p.rstrip("/") for p in self._prepared.path_args]
        if not prefixes or "." in prefixes or "" in prefixes:
            return True
        prefixes.extend(self._renamed_from)
        candidates = [parsed.path] + ([parsed.oldpath] if parsed.oldpath else [])
        return any(
            path == prefix or path.startswith(prefix + "/")
            for path in candidates
            for prefix in prefixes
        )

    async def _emit(self, stream: HistoryStream, record: CommitRecord) -> None:
        header = record.header
        assert header is not None
        commit = header.commit
        left = Rev.at_commit(header.left_hash) if header.left_hash else null_node()
        right = self._prepared.base or Rev.at_commit(header.right_hash)
        path_args = list(self._prepared.path_args)

        files = [
            FileEntry(
                path=parsed.path,
                status=parsed.status,
                revs=(left, right),
                kind=FileKind.WORKING,
                oldpath=parsed.oldpath,
                commit=commit,
            )
            for parsed in record.files
            if self._matches(parsed)
        ]
        if not files:
            if path_args:
                stream.skip(commit.hash, "Commit is missing from history")
                return
            await stream.emit(LogEntry.null_entry(commit, path_args, self._single_file))
            return

        if self._prepared.follow:
            self._renamed_from.extend(f.oldpath for f in files if f.oldpath and f.status == "R")
        await stream.emit(
            LogEntry(
                commit=commit,
                files=files,
                path_args=path_args,
                single_file=self._single_file,
            )
        )

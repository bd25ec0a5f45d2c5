"""Mercurial implementation of :class:`~revscope.vcs.protocol.VcsAdapter`.

Mercurial has no index: comparisons are between changesets and the working
directory, and conflicts are reported by ``hg resolve --list`` against the
two parents of an uncommitted merge.
"""

from __future__ import annotations

import contextlib
import shutil
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Any

from revscope.config import RevscopeConfig, load_config
from revscope.exceptions import InvalidRevisionError, ProcessExitError
from revscope.git.history import PreparedLogOptions
from revscope.git.stat_parser import ParsedFile
from revscope.hg.flags import HG_FLAGS, HG_LOG_FLAG_ORDER
from revscope.hg.history import HgFileHistory
from revscope.hg.parser import (
    parse_diff_stats,
    parse_resolve_list,
    parse_status_lines,
)
from revscope.hg.rev import NULL_NODE, to_rev_args
from revscope.logging import get_logger, repository_context
from revscope.runners.command import CommandRunner
from revscope.runners.coordinator import JobCoordinator
from revscope.runners.job import Job
from revscope.runners.models import CommandResult
from revscope.utils.async_utils import ParallelExecutionError, run_parallel
from revscope.vcs.flags import FlagSet, LogOptions
from revscope.vcs.history import HistoryStream
from revscope.vcs.models import FileEntry, FileKind, FileList, FileStats, RestoreResult
from revscope.vcs.rev import Rev

__all__ = ["HgAdapter"]

logger = get_logger(__name__)

_SHOW_QUEUE = "show"
_BACKUP_SUFFIX = ".orig"
_REVERSED_STATUS = {"A": "D", "D": "A"}


class HgAdapter:
    """Repository operations backed by the ``hg`` executable.

    Args:
        toplevel: Root of the working directory.
        config: Settings; loaded from the environment when None.
        runner: One-shot command runner; created when None.
        job_factory: Creates streaming jobs; replaced in tests.
    """

    def __init__(
        self,
        toplevel: Path,
        *,
        config: RevscopeConfig | None = None,
        runner: CommandRunner | None = None,
        job_factory: type[Job] = Job,
    ) -> None:
        self._toplevel = Path(toplevel)
        self.config = config if config is not None else load_config()
        self._runner = runner or CommandRunner(cwd=self._toplevel)
        self._job_factory = job_factory
        self.coordinator = JobCoordinator(
            max_retries=self.config.jobs.max_retries,
            retry_delay=self.config.jobs.retry_delay,
        )

    def __repr__(self) -> str:
        return f"HgAdapter({str(self._toplevel)!r})"

    @property
    def backend(self) -> str:
        return "hg"

    @property
    def toplevel(self) -> Path:
        return self._toplevel

    @property
    def flags(self) -> FlagSet:
        return HG_FLAGS

    def get_command(self) -> list[str]:
        """The configured hg command vector."""
        return list(self.config.commands.hg_cmd)

    def hg_command(self, *args: str) -> list[str]:
        return [*self.config.commands.hg_cmd, *args]

    # =====================================================================
    # Internal helpers
    # =====================================================================

    async def _exec(self, *args: str, retry_on_empty: bool = False) -> CommandResult:
        jobs = self.config.jobs
        result = await self._runner.run(
            self.hg_command(*args),
            cwd=self._toplevel,
            env={"HGPLAIN": "1"},
            max_retries=jobs.max_retries if retry_on_empty else 0,
            retry_delay=jobs.retry_delay,
            retry_on_empty=retry_on_empty,
        )
        if not result.success:
            logger.debug(
                "hg_command_failed",
                args=list(args),
                returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
        return result

    def _relative(self, path: str | Path) -> str:
        candidate = Path(path)
        if candidate.is_absolute():
            with contextlib.suppress(ValueError):
                return candidate.resolve().relative_to(self._toplevel.resolve()).as_posix()
        return str(path)

    async def _node(self, revset: str) -> str | None:
        result = await self._exec("log", "--rev", revset, "--limit", "1", "--template", "{node}")
        node = result.stdout.strip() if result.success else ""
        if not node or node == NULL_NODE:
            return None
        return node

    # =====================================================================
    # Revisions
    # =====================================================================

    async def head_rev(self) -> Rev | None:
        """The working directory's first parent, None in an empty repository."""
        node = await self._node(".")
        return Rev.at_commit(node, track_head=True) if node else None

    async def resolve_revision(self, name: str) -> Rev:
        node = await self._node(name)
        if node is None:
            raise InvalidRevisionError(
                f"Bad revision: {name!r}", rev_arg=name, backend=self.backend
            )
        return Rev.at_commit(node)

    async def parse_revs(self, rev_arg: str | None = None) -> tuple[Rev, Rev]:
        """Turn a revision argument into the rev pair to compare.

        Without an argument the working directory parent is compared with
        the working directory. ``A::B`` and ``A..B`` compare both endpoints;
        a single revision is compared with the working directory.

        Raises:
            InvalidRevisionError: If *rev_arg* does not resolve.
        """
        if not rev_arg:
            head = await self.head_rev()
            if head is None:
                raise InvalidRevisionError(
                    "Repository has no changesets", rev_arg="", backend=self.backend
                )
            return head, Rev.local()

        for separator in ("::", ".."):
            if separator in rev_arg:
                left_name, _, right_name = rev_arg.partition(separator)
                left = await self.resolve_revision(left_name or "0")
                right = await self.resolve_revision(right_name or ".")
                return left, right

        return await self.resolve_revision(rev_arg), Rev.local()

    async def rev_candidates(self, prefix: str = "") -> list[str]:
        candidates = ["."]
        sources = (("bookmarks", "bookmark"), ("branches", "branch"), ("tags", "tag"))
        for command, keyword in sources:
            result = await self._exec(command, "--template", f"{{{keyword}}}\\n")
            candidates.extend(line for line in result.lines if line)
        return [c for c in dict.fromkeys(candidates) if c.startswith(prefix)]

    # =====================================================================
    # Objects
    # =====================================================================

    async def show(self, path: str, rev: Rev | None = None) -> list[str]:
        """Content of *path* at *rev* (the working directory parent when None).

        Raises:
            InvalidRevisionError: For stage and custom revs.
            ProcessExitError: If hg fails.
        """
        rel_path = self._relative(path)
        if rev is not None and rev.is_local:
            return (self._toplevel / rel_path).read_text(errors="replace").splitlines()
        if rev is not None and not rev.is_commit:
            raise InvalidRevisionError(
                f"{rev} has no Mercurial representation", rev_arg=str(rev), backend=self.backend
            )

        revision = str(rev.commit) if rev is not None else "."
        job = self._job("cat", "--rev", revision, "--", rel_path)
        job = await self.coordinator.queue(_SHOW_QUEUE).run(job)
        if job.returncode != 0:
            raise job.to_error(f"Failed to read {path} at {revision}")
        return job.stdout

    async def is_binary(self, path: str, rev: Rev) -> bool:
        try:
            lines = await self.show(path, rev)
        except (OSError, ProcessExitError, InvalidRevisionError):
            return True
        return any("\0" in line for line in lines)

    # =====================================================================
    # Diff
    # =====================================================================

    async def diff(
        self,
        left: Rev,
        right: Rev,
        paths: Sequence[str] = (),
        *,
        show_untracked: bool | None = None,
    ) -> FileList:
        """Changed files between *left* and *right*.

        Untracked files are listed when *right* is the working directory,
        unless disabled by argument or configuration. Unresolved merge
        conflicts become conflict entries.

        Raises:
            InvalidRevPairError: If the pair cannot be compared.
            ProcessExitError: If an hg command failed.
        """
        with repository_context(self._toplevel, self.backend):
            args = to_rev_args(left, right)
            rel_paths = [self._relative(p) for p in paths]

            if show_untracked is None:
                show_untracked = self.config.diff.show_untracked
            list_untracked = show_untracked is not False and right.is_local

            tasks: list[Callable[[], Awaitable[Any]]] = [
                lambda: self._status(args, rel_paths),
                lambda: self._stats(args, rel_paths),
            ]
            if right.is_local:
                tasks.append(lambda: self._conflicts(rel_paths))

            try:
                results = await run_parallel(tasks)
            except ParallelExecutionError as e:
                raise e.exceptions[0] from None

            parsed, stats = results[0], results[1]
            conflicts: list[FileEntry] = results[2] if right.is_local else []
            conflicted = {c.path for c in conflicts}

            working: list[FileEntry] = []
            has_untracked = False
            for item in parsed:
                if item.path in conflicted:
                    continue
                if item.status == "?":
                    if not list_untracked:
                        continue
                    has_untracked = True
                working.append(self._entry(item, stats.get(item.path), left, right))

            if has_untracked:
                working.sort(key=lambda f: f.path.lower())

            logger.debug(
                "diff_file_list_built",
                left=str(left),
                right=str(right),
                working=len(working),
                conflicting=len(conflicts),
            )
            return FileList(working=working, conflicting=conflicts)

    def _entry(
        self, item: ParsedFile, stats: FileStats | None, left: Rev, right: Rev
    ) -> FileEntry:
        status, path, oldpath = item.status, item.path, item.oldpath
        if left.is_local:
            # Mercurial always compares towards the working directory
            status = _REVERSED_STATUS.get(status, status)
            if stats is not None:
                stats = stats.swapped()
            if status == "R" and oldpath:
                path, oldpath = oldpath, path
        return FileEntry(
            path=path,
            status=status,
            revs=(left, right),
            kind=FileKind.WORKING,
            oldpath=oldpath,
            stats=None if status == "?" else stats,
        )

    async def _status(self, args: Sequence[str], paths: Sequence[str]) -> list[ParsedFile]:
        job = self._job("status", "--copies", *args, "--", *paths)
        await self.coordinator.run_all([job])
        if job.returncode != 0:
            raise job.to_error()
        return parse_status_lines(job.stdout)

    async def _stats(self, args: Sequence[str], paths: Sequence[str]) -> dict[str, FileStats]:
        job = self._job("diff", "--git", *args, "--", *paths)
        await self.coordinator.run_all([job])
        if job.returncode != 0:
            raise job.to_error()
        return parse_diff_stats("\n".join(job.stdout) + "\n")

    async def _conflicts(self, paths: Sequence[str]) -> list[FileEntry]:
        result = await self._exec("resolve", "--list", "--", *paths)
        unresolved = parse_resolve_list(result.lines) if result.success else []
        if not unresolved:
            return []

        ours = await self._node("p1()")
        theirs = await self._node("p2()")
        base = await self._node("ancestor(p1(), p2())")
        revs = (
            Rev.at_commit(ours) if ours else Rev.local(),
            Rev.local(),
            Rev.at_commit(theirs) if theirs else Rev.local(),
            Rev.at_commit(base) if base else Rev.local(),
        )
        return [
            FileEntry(path=path, status="U", revs=revs, kind=FileKind.CONFLICTING)
            for path in unresolved
        ]

    def _job(self, *args: str) -> Job:
        return self._job_factory(
            self.hg_command(*args),
            cwd=self._toplevel,
            env={"HGPLAIN": "1"},
            grace_period=self.config.jobs.termination_grace_period,
        )

    # =====================================================================
    # History
    # =====================================================================

    async def is_single_file(self, path_args: Sequence[str]) -> bool:
        if len(path_args) != 1 or (self._toplevel / path_args[0]).is_dir():
            return False
        result = await self._exec("files", "--", *path_args)
        return len([line for line in result.lines if line]) < 2

    async def _effective_options(self, options: LogOptions | None) -> tuple[LogOptions, bool]:
        requested = options or LogOptions()
        paths = [self._relative(p) for p in requested.path_args]
        single_file = await self.is_single_file(paths)
        effective = self.config.file_history.defaults_for(single_file).merged(requested)
        effective.path_args = paths
        return effective, single_file

    async def _prepare(self, options: LogOptions, single_file: bool) -> PreparedLogOptions:
        errors = HG_FLAGS.validate(options)
        if errors:
            raise ValueError("; ".join(errors))

        rev_range = None
        if options.rev_range:
            if await self._node(options.rev_range):
                rev_range = options.rev_range
            else:
                logger.warning("bad_range_revision_ignored", rev_range=options.rev_range)

        base: Rev | None = None
        if options.base == "LOCAL":
            base = Rev.local()
        elif options.base:
            node = await self._node(options.base)
            if node:
                base = Rev.at_commit(node)
            else:
                logger.warning("bad_base_revision_ignored", base=options.base)

        keys = [k for k in HG_LOG_FLAG_ORDER if k != "follow" or single_file]
        return PreparedLogOptions(
            rev_range=rev_range,
            base=base,
            path_args=tuple(options.path_args),
            flags=tuple(HG_FLAGS.render(options, keys)),
            follow=options.follow and single_file,
        )

    async def file_history(self, options: LogOptions | None = None) -> HistoryStream:
        """Start a streamed history query.

        Options hg has no counterpart for are ignored.

        Raises:
            ValueError: If an option value is not accepted.
        """
        with repository_context(self._toplevel, self.backend):
            effective, single_file = await self._effective_options(options)
            prepared = await self._prepare(effective, single_file)
            history = HgFileHistory(
                self, prepared, single_file=single_file, job_factory=self._job_factory
            )
            return history.start()

    async def file_history_dry_run(self, options: LogOptions | None = None) -> tuple[bool, str]:
        effective, single_file = await self._effective_options(options)
        prepared = await self._prepare(effective, single_file)

        description = [f"Top-level path: '{self._toplevel}'"]
        if prepared.rev_range:
            description.append(f"Revision range: '{prepared.rev_range}'")
        description.append(f"Flags: {' '.join(prepared.flags)}")
        summary = ", ".join(description)

        range_args = ["--rev", prepared.rev_range] if prepared.rev_range else []
        result = await self._exec(
            "log",
            *range_args,
            "--limit",
            "1",
            "--template",
            "{node}",
            "--",
            *prepared.path_args,
        )
        ok = result.success and not result.empty
        if not ok:
            logger.debug("file_history_dry_run_failed", summary=summary)
        return ok, summary

    # =====================================================================
    # Working directory
    # =====================================================================

    async def restore_file(
        self,
        path: str,
        kind: FileKind,
        commit: str | None = None,
    ) -> RestoreResult:
        """Restore *path* and return a hint for undoing it.

        The current content is kept next to the file with an ``.orig``
        suffix, the same name ``hg revert`` uses for its backups.
        """
        if kind is FileKind.STAGED:
            return RestoreResult(ok=False, message="Mercurial has no staging area")

        rel_path = self._relative(path)
        abs_path = self._toplevel / rel_path
        backup = abs_path.with_name(abs_path.name + _BACKUP_SUFFIX)
        revision = commit or "."

        tracked = (await self._exec("files", "--rev", revision, "--", rel_path)).success

        if abs_path.is_file():
            try:
                shutil.copy2(abs_path, backup)
            except OSError as e:
                return RestoreResult(ok=False, message=f"Failed to back up {abs_path}: {e}")
            undo = f"mv {rel_path}{_BACKUP_SUFFIX} {rel_path}"
        else:
            undo = f"rm {rel_path}"

        if not tracked:
            try:
                abs_path.unlink()
            except OSError as e:
                return RestoreResult(ok=False, message=f"Failed to delete {abs_path}: {e}")
        else:
            result = await self._exec("revert", "--no-backup", "--rev", revision, "--", rel_path)
            if not result.success:
                return RestoreResult(ok=False, message=result.stderr.strip())

        logger.info("file_restored", path=rel_path, kind=kind.value, commit=commit)
        return RestoreResult(ok=True, undo=undo)

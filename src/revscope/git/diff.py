"""File lists for git comparisons.

:class:`DiffFileListBuilder` computes the :class:`~revscope.vcs.models.FileList`
of a rev pair from up to three concurrent sub-computations:

- tracked changes (``git diff --name-status`` paired with ``--numstat``);
- untracked files (``git ls-files --others --exclude-standard``);
- staged changes, only when the index is compared with the working tree.

Any failing sub-computation aborts the whole listing; a partial file list
would be misleading.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any

from revscope.exceptions import OutputValidationError, ProcessExitError
from revscope.git.rev import null_tree, to_range
from revscope.git.stat_parser import parse_stat_lines
from revscope.logging import get_logger
from revscope.runners.coordinator import matching_line_counts
from revscope.runners.job import Job
from revscope.utils.async_utils import ParallelExecutionError, run_parallel
from revscope.vcs.models import FileEntry, FileKind, FileList
from revscope.vcs.rev import Rev

if TYPE_CHECKING:
    from revscope.git.adapter import GitAdapter

__all__ = ["DiffFileListBuilder", "UNMERGED_STATUS", "UNTRACKED_STATUS"]

logger = get_logger(__name__)

UNMERGED_STATUS = "U"
UNTRACKED_STATUS = "?"


class DiffFileListBuilder:
    """Builds file lists for one :class:`~revscope.git.adapter.GitAdapter`.

    Example:
        ```python
        builder = DiffFileListBuilder(adapter)
        files = await builder.build(Rev.at_stage(0), Rev.local())
        for entry in files:
            print(entry.status, entry.path)
        ```
    """

    def __init__(self, adapter: GitAdapter, *, job_factory: type[Job] = Job) -> None:
        self._adapter = adapter
        self._job_factory = job_factory

    async def build(
        self,
        left: Rev,
        right: Rev,
        paths: Sequence[str] = (),
        *,
        show_untracked: bool | None = None,
    ) -> FileList:
        """Compute the changed files between *left* and *right*.

        Args:
            left: Left-hand rev.
            right: Right-hand rev.
            paths: Path filters.
            show_untracked: List untracked files; None defers to the
                configuration and then to ``status.showUntrackedFiles``.

        Raises:
            InvalidRevPairError: If the pair cannot be diffed.
            ProcessExitError: If a git command failed. When several
                sub-computations failed the messages are concatenated.
            OutputValidationError: If the name-status and numstat listings
                disagree after the bounded retries.
        """
        args = to_range(left, right)

        if show_untracked is None:
            show_untracked = self._adapter.config.diff.show_untracked
        if show_untracked is None and right.is_local:
            show_untracked = await self._adapter.show_untracked()
        list_untracked = bool(show_untracked) and right.is_local
        list_staged = left.is_stage and left.stage == 0 and right.is_local

        tasks: list[Callable[[], Awaitable[Any]]] = [
            lambda: self.tracked(left, right, args, paths, FileKind.WORKING)
        ]
        if list_untracked:
            tasks.append(lambda: self.untracked(left, right, paths))
        if list_staged:
            tasks.append(lambda: self.staged(paths))

        try:
            results = await run_parallel(tasks)
        except ParallelExecutionError as e:
            if len(e.exceptions) == 1:
                raise e.exceptions[0] from None
            raise _combined_error(e.exceptions) from e

        working, conflicting = results[0]
        result = FileList(working=working, conflicting=conflicting)
        if list_untracked:
            untracked = results[1]
            if untracked:
                result.working = sorted([*working, *untracked], key=lambda f: f.path.lower())
        if list_staged:
            result.staged = results[-1][0]

        logger.debug(
            "diff_file_list_built",
            left=str(left),
            right=str(right),
            working=len(result.working),
            staged=len(result.staged),
            conflicting=len(result.conflicting),
        )
        return result

    async def tracked(
        self,
        left: Rev,
        right: Rev,
        args: Sequence[str],
        paths: Sequence[str],
        kind: FileKind,
    ) -> tuple[list[FileEntry], list[FileEntry]]:
        """Tracked changes for one comparison.

        Returns:
            ``(files, conflicts)``. Unmerged paths become 4-way conflict
            entries for the working kind and are dropped for the staged kind.
        """
        jobs = [
            self._job("diff", "--ignore-submodules", flag, *args, "--", *paths)
            for flag in ("--name-status", "--numstat")
        ]
        jobs = await self._adapter.coordinator.run_validated(
            jobs,
            validate=matching_line_counts,
            context="diff_tracked_files",
        )
        _raise_on_failure(jobs)

        parsed, errors = parse_stat_lines(jobs[0].stdout, jobs[1].stdout)
        if errors:
            raise OutputValidationError("; ".join(errors), attempts=1)

        swap = left.is_local
        # git lists an unmerged path once as U and again with its worktree status
        unmerged = {item.path for item in parsed if item.status == UNMERGED_STATUS}
        files: list[FileEntry] = []
        conflicts: list[FileEntry] = []
        for item in parsed:
            if item.path in unmerged:
                if kind is FileKind.WORKING and item.status == UNMERGED_STATUS:
                    conflicts.append(
                        FileEntry(
                            path=item.path,
                            status=UNMERGED_STATUS,
                            revs=(Rev.at_stage(2), Rev.local(), Rev.at_stage(3), Rev.at_stage(1)),
                            kind=FileKind.CONFLICTING,
                            oldpath=item.oldpath,
                        )
                    )
                continue

            stats = item.stats.swapped() if swap and item.stats is not None else item.stats
            files.append(
                FileEntry(
                    path=item.path,
                    status=item.status,
                    revs=(left, right),
                    kind=kind,
                    oldpath=item.oldpath,
                    stats=stats,
                )
            )
        return files, conflicts

    async def untracked(self, left: Rev, right: Rev, paths: Sequence[str] = ()) -> list[FileEntry]:
        """Untracked, non-ignored files as status ``?`` entries without stats."""
        job = self._job("ls-files", "--others", "--exclude-standard", "--", *paths)
        await self._adapter.coordinator.run_all([job])
        _raise_on_failure([job])
        return [
            FileEntry(
                path=line,
                status=UNTRACKED_STATUS,
                revs=(left, right),
                kind=FileKind.WORKING,
            )
            for line in job.stdout
            if line
        ]

    async def staged(self, paths: Sequence[str] = ()) -> tuple[list[FileEntry], list[FileEntry]]:
        """Changes between HEAD (or the empty tree) and the index."""
        head = await self._adapter.head_rev()
        left = head if head is not None else null_tree()
        return await self.tracked(
            left,
            Rev.at_stage(0),
            ["--cached", str(left.commit)],
            paths,
            FileKind.STAGED,
        )

    def _job(self, *args: str) -> Job:
        return self._job_factory(
            self._adapter.git_command(*args),
            cwd=self._adapter.toplevel,
            grace_period=self._adapter.config.jobs.termination_grace_period,
        )


def _raise_on_failure(jobs: Sequence[Job]) -> None:
    for job in jobs:
        if job.returncode != 0:
            raise job.to_error()


def _combined_error(exceptions: Sequence[BaseException]) -> ProcessExitError:
    stderr: list[str] = []
    messages: list[str] = []
    for exc in exceptions:
        messages.append(getattr(exc, "message", None) or str(exc))
        stderr.extend(getattr(exc, "stderr", None) or [])
    return ProcessExitError("\n".join(messages), stderr=stderr)

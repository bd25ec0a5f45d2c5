"""Git implementation of :class:`~revscope.vcs.protocol.VcsAdapter`.

Short queries (``rev-parse``, ``ls-files``, ``config``...) go through a
:class:`~revscope.runners.command.CommandRunner`. Streamed and correlated
commands (history, diff listings, object reads) run as
:class:`~revscope.runners.job.Job` instances owned by the adapter's
:class:`~revscope.runners.coordinator.JobCoordinator`.
"""

from __future__ import annotations

import contextlib
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from revscope.config import RevscopeConfig, load_config
from revscope.constants import GIT_TARGET_VERSION, MAX_RETRY_DELAY
from revscope.exceptions import (
    InvalidRevisionError,
    OutputValidationError,
    ProcessExitError,
)
from revscope.git import rev as git_rev
from revscope.git.diff import DiffFileListBuilder
from revscope.git.flags import GIT_FLAGS, LOG_FLAG_ORDER
from revscope.git.history import GitFileHistory, PreparedLogOptions
from revscope.git.pathspec import pathspec_split
from revscope.git.rev import is_rev_arg_range, null_tree
from revscope.git.stat_parser import parse_commit_header
from revscope.logging import get_logger, repository_context
from revscope.runners.command import CommandRunner
from revscope.runners.coordinator import JobCoordinator, empty_output
from revscope.runners.job import Job
from revscope.runners.models import CommandResult
from revscope.vcs.flags import FlagSet, LogOptions
from revscope.vcs.history import HistoryStream
from revscope.vcs.models import Commit, FileKind, FileList, RestoreResult
from revscope.vcs.rev import Rev

__all__ = ["GitAdapter", "MergeContext", "MergeSide"]

logger = get_logger(__name__)

_VERSION_PATTERN = re.compile(r"git version (\d+)\.(\d+)(?:\.(\d+))?")

#: Special refs offered as revision candidates when present in the git dir.
HEAD_FILES: tuple[str, ...] = (
    "HEAD",
    "FETCH_HEAD",
    "ORIG_HEAD",
    "MERGE_HEAD",
    "REBASE_HEAD",
    "CHERRY_PICK_HEAD",
    "REVERT_HEAD",
)

#: Heads that mark an operation in progress, in lookup order.
MERGE_HEADS: tuple[str, ...] = ("MERGE_HEAD", "REBASE_HEAD", "REVERT_HEAD")

_SHOW_QUEUE = "show"

#: ``--pretty`` format of :meth:`GitAdapter.get_commit`; the body follows.
_COMMIT_FORMAT = "%H %P%n%an%n%ad%n%ar%n  %D%n  %gd%n  %s%n%b"


@dataclass(frozen=True, slots=True)
class MergeSide:
    """One side of an in-progress merge."""

    hash: str | None = None
    ref_names: str | None = None


@dataclass(frozen=True, slots=True)
class MergeContext:
    """The commits involved in an in-progress merge, rebase or revert.

    Attributes:
        head: The marker head that was found (``MERGE_HEAD``...).
        ours: Current HEAD.
        theirs: The commit being merged in.
        base: Their merge base.
    """

    head: str
    ours: MergeSide
    theirs: MergeSide
    base: MergeSide


class GitAdapter:
    """Repository operations backed by the ``git`` executable.

    Args:
        toplevel: Root of the working tree.
        config: Settings; loaded from the environment when None.
        runner: One-shot command runner; created when None.
        job_factory: Creates streaming jobs; replaced in tests.

    Example:
        ```python
        adapter = GitAdapter(Path("/project"))
        files = await adapter.diff(Rev.at_stage(0), Rev.local())
        stream = await adapter.file_history(LogOptions(path_args=["README.md"]))
        entries = await stream.collect()
        ```
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
        self._diff_builder = DiffFileListBuilder(self, job_factory=job_factory)
        self._git_dir: Path | None = None
        self.version: tuple[int, int, int] | None = None

    def __repr__(self) -> str:
        return f"GitAdapter({str(self._toplevel)!r})"

    # =====================================================================
    # Properties
    # =====================================================================

    @property
    def backend(self) -> str:
        return "git"

    @property
    def toplevel(self) -> Path:
        return self._toplevel

    @property
    def flags(self) -> FlagSet:
        return GIT_FLAGS

    def get_command(self) -> list[str]:
        """The configured git command vector."""
        return list(self.config.commands.git_cmd)

    def git_command(self, *args: str) -> list[str]:
        return [*self.config.commands.git_cmd, *args]

    # =====================================================================
    # Internal helpers
    # =====================================================================

    async def _exec(
        self,
        *args: str,
        retry_on_empty: bool = False,
        stdin: str | None = None,
    ) -> CommandResult:
        jobs = self.config.jobs
        result = await self._runner.run(
            self.git_command(*args),
            cwd=self._toplevel,
            stdin=stdin,
            max_retries=jobs.max_retries if retry_on_empty else 0,
            retry_delay=jobs.retry_delay,
            retry_on_empty=retry_on_empty,
        )
        if not result.success:
            logger.debug(
                "git_command_failed",
                args=list(args),
                returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
        return result

    async def _exec_checked(self, *args: str, retry_on_empty: bool = False) -> CommandResult:
        result = await self._exec(*args, retry_on_empty=retry_on_empty)
        if not result.success:
            raise ProcessExitError(
                f"git {' '.join(args)} exited with code {result.returncode}",
                command=self.git_command(*args),
                returncode=result.returncode,
                stderr=result.stderr_lines,
            )
        return result

    def _relative(self, path: str | Path) -> str:
        candidate = Path(path)
        if candidate.is_absolute():
            with contextlib.suppress(ValueError):
                return candidate.resolve().relative_to(self._toplevel.resolve()).as_posix()
        return str(path)

    # =====================================================================
    # Repository information
    # =====================================================================

    async def check_version(self) -> tuple[int, int, int]:
        """Read the git version and warn when it is older than supported.

        Raises:
            SpawnError: If git cannot be executed.
            ProcessExitError: If the version cannot be read.
        """
        result = await self._exec_checked("version")
        match = _VERSION_PATTERN.search(result.stdout)
        if match is None:
            raise ProcessExitError(
                f"Could not parse git version from {result.stdout.strip()!r}",
                command=self.git_command("version"),
                returncode=result.returncode,
            )
        major, minor, patch = match.groups()
        self.version = (int(major), int(minor), int(patch or 0))
        if self.version < GIT_TARGET_VERSION:
            logger.warning(
                "git_version_outdated",
                current=".".join(map(str, self.version)),
                target=".".join(map(str, GIT_TARGET_VERSION)),
            )
        return self.version

    async def get_dir(self) -> Path | None:
        """Absolute path of the git dir, None if git cannot tell."""
        if self._git_dir is None:
            result = await self._exec("rev-parse", "--path-format=absolute", "--git-dir")
            if result.success and result.lines:
                self._git_dir = Path(result.lines[0].strip())
        return self._git_dir

    async def head_rev(self) -> Rev | None:
        result = await self._exec("rev-parse", "HEAD", "--", retry_on_empty=True)
        if not result.success or not result.lines:
            return None
        return Rev.at_commit(result.lines[0].strip().lstrip("^"), track_head=True)

    async def show_untracked(self) -> bool:
        """False if ``status.showUntrackedFiles`` is ``no``."""
        result = await self._exec("config", "status.showUntrackedFiles")
        return result.stdout.strip() != "no"

    async def is_single_file(
        self, path_args: Sequence[str], line_ranges: Sequence[str] = ()
    ) -> bool:
        """True if a history query targets exactly one file."""
        if line_ranges:
            traced = {r.rsplit(":", 1)[-1] for r in line_ranges}
            return len(traced) == 1
        if len(path_args) != 1:
            return False
        _, pattern = pathspec_split(path_args[0])
        if (self._toplevel / pattern).is_dir():
            return False
        result = await self._exec("ls-files", "--", *path_args)
        return len([line for line in result.lines if line]) < 2

    async def earliest_commit(self) -> str | None:
        """Hash of the first root commit reachable from HEAD."""
        result = await self._exec("rev-list", "--max-parents=0", "HEAD")
        if not result.success or not result.lines:
            return None
        return result.lines[-1].strip()

    async def get_merge_context(self) -> MergeContext | None:
        """Describe the merge, rebase or revert in progress, if any."""
        git_dir = await self.get_dir()
        if git_dir is None:
            return None
        their_head = next((h for h in MERGE_HEADS if (git_dir / h).is_file()), None)
        if their_head is None:
            return None

        async def side(rev: str) -> MergeSide:
            result = await self._exec("show", "-s", "--pretty=format:%H%n%D", rev, "--")
            if not result.success or not result.lines:
                return MergeSide()
            lines = result.lines
            return MergeSide(hash=lines[0], ref_names=(lines[1] if len(lines) > 1 else "") or None)

        base_result = await self._exec_checked("merge-base", "HEAD", their_head)
        base_hash = base_result.lines[0].strip()
        base_refs = await self._exec("show", "-s", "--pretty=format:%D", base_hash, "--")
        return MergeContext(
            head=their_head,
            ours=await side("HEAD"),
            theirs=await side(their_head),
            base=MergeSide(hash=base_hash, ref_names=base_refs.stdout.strip() or None),
        )

    # =====================================================================
    # Revisions
    # =====================================================================

    async def verify_rev_arg(self, rev_arg: str) -> tuple[bool, list[str]]:
        """Check that *rev_arg* names one or more revisions.

        Returns:
            ``(ok, rev_strings)`` from ``git rev-parse --revs-only``.
        """
        result = await self._exec("rev-parse", "--revs-only", rev_arg)
        lines = result.lines
        ok = result.success and (len(lines) > 1 or (bool(lines) and lines[0] != ""))
        return ok, lines

    async def resolve_revision(self, name: str) -> Rev:
        result = await self._exec("rev-parse", "--verify", "--quiet", f"{name}^{{commit}}")
        if not result.success or not result.lines:
            raise InvalidRevisionError(
                f"Bad revision: {name!r}", rev_arg=name, backend=self.backend
            )
        return Rev.at_commit(result.lines[0].strip())

    async def file_blob_hash(self, path: str, rev_arg: str | None = None) -> str | None:
        """Object hash of *path* at *rev_arg* (the index when None)."""
        result = await self._exec(
            "rev-parse", "--revs-only", f"{rev_arg or ''}:{path}", retry_on_empty=True
        )
        if not result.success or not result.lines:
            return None
        return result.lines[0].strip()

    async def symmetric_diff_revs(self, rev_arg: str) -> tuple[Rev, Rev]:
        """Revs of ``A...B``: the merge base of A and B, and B.

        Raises:
            InvalidRevisionError: If either side does not resolve.
        """
        left_name, _, right_name = rev_arg.partition("...")
        left_name = left_name or "HEAD"
        right_name = right_name or "HEAD"

        base = await self._exec("merge-base", left_name, right_name)
        right = await self._exec("rev-parse", "--revs-only", right_name)
        if not (base.success and base.lines and right.success and right.lines):
            raise InvalidRevisionError(
                f"Failed to parse rev {rev_arg!r}: {(base.stderr or right.stderr).strip()}",
                rev_arg=rev_arg,
                backend=self.backend,
            )
        return (
            Rev.at_commit(base.lines[0].lstrip("^")),
            Rev.at_commit(right.lines[0].lstrip("^")),
        )

    async def parse_revs(
        self,
        rev_arg: str | None = None,
        *,
        cached: bool = False,
        imply_local: bool = False,
    ) -> tuple[Rev, Rev]:
        """Turn a revision argument into the rev pair to compare.

        Without an argument the index is compared with the working tree, or
        HEAD with the index when *cached*. A single commit is compared with
        the working tree (the index when *cached*). Ranges resolve to both
        endpoints; with *imply_local* an endpoint equal to HEAD becomes the
        working tree.

        Raises:
            InvalidRevisionError: If *rev_arg* does not resolve.
        """
        head = await self.head_rev()

        if not rev_arg:
            if cached:
                return (head or null_tree()), Rev.at_stage(0)
            return Rev.at_stage(0), Rev.local()

        if "..." in rev_arg:
            left, right = await self.symmetric_diff_revs(rev_arg)
            return git_rev.imply_local(left, right, head) if imply_local else (left, right)

        result = await self._exec("rev-parse", "--revs-only", rev_arg)
        if not result.success or not result.lines:
            raise InvalidRevisionError(
                f"Bad revision: {rev_arg!r}", rev_arg=rev_arg, backend=self.backend
            )

        rev_strings = [line.lstrip("^") for line in result.lines if line]
        if is_rev_arg_range(rev_arg):
            right = Rev.at_commit(rev_strings[0])
            left = Rev.at_commit(rev_strings[1]) if len(rev_strings) > 1 else null_tree()
            return git_rev.imply_local(left, right, head) if imply_local else (left, right)

        left = Rev.at_commit(rev_strings[0])
        return left, (Rev.at_stage(0) if cached else Rev.local())

    async def rev_candidates(self, prefix: str = "") -> list[str]:
        candidates: list[str] = []
        git_dir = await self.get_dir()
        if git_dir is not None:
            candidates.extend(name for name in HEAD_FILES if (git_dir / name).is_file())

        refs = await self._exec("rev-parse", "--symbolic", "--branches", "--tags", "--remotes")
        stashes = await self._exec("stash", "list", "--pretty=format:%gd")
        candidates.extend(line for line in refs.lines if line)
        candidates.extend(line for line in stashes.lines if line)
        return [c for c in dict.fromkeys(candidates) if c.startswith(prefix)]

    # =====================================================================
    # Objects
    # =====================================================================

    async def show(self, path: str, rev: Rev | None = None) -> list[str]:
        """Content of *path* at *rev* (the index stage 0 when None).

        Reads run one at a time through the ``"show"`` queue and are retried
        when git exits cleanly without output. A file that is still empty
        after the retries is returned as empty.

        Raises:
            ProcessExitError: If git fails.
        """
        object_name = rev.object_name() if rev is not None else ""
        if rev is not None and object_name is None:
            raise InvalidRevisionError(
                f"{rev} has no object representation", rev_arg=str(rev), backend=self.backend
            )
        command = self.git_command("show", f"{object_name}:{self._relative(path)}")
        queue = self.coordinator.queue(_SHOW_QUEUE)

        job = self._job_factory(command, cwd=self._toplevel, fail_on_empty=True)
        jobs_config = self.config.jobs
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(jobs_config.max_retries + 1),
                wait=wait_exponential(
                    multiplier=jobs_config.retry_delay,
                    min=jobs_config.retry_delay,
                    max=MAX_RETRY_DELAY,
                ),
                retry=retry_if_exception_type(OutputValidationError),
                reraise=True,
            ):
                with attempt:
                    if job.done:
                        job = job.clone()
                    job = await queue.run(job)
                    if empty_output([job]):
                        logger.debug(
                            "git_show_empty",
                            path=path,
                            rev=str(rev),
                            attempt=attempt.retry_state.attempt_number,
                        )
                        raise OutputValidationError(
                            f"git show {path} printed nothing",
                            attempts=attempt.retry_state.attempt_number,
                            deficient=[0],
                        )
        except OutputValidationError:
            # Empty files are legitimately empty
            return []

        if job.returncode != 0:
            raise job.to_error(f"Failed to read {path} at {rev}")
        return job.stdout

    async def get_commit(self, rev_arg: str) -> Commit:
        """Full commit metadata including the message body.

        Raises:
            InvalidRevisionError: If *rev_arg* does not resolve.
        """
        result = await self._exec(
            "show", "-s", f"--pretty=format:{_COMMIT_FORMAT}", "--date=raw", rev_arg, "--"
        )
        lines = result.lines
        header, errors = parse_commit_header(lines[:7]) if result.success else (None, [])
        if header is None:
            raise InvalidRevisionError(
                f"Bad revision: {rev_arg!r} {'; '.join(errors)}".strip(),
                rev_arg=rev_arg,
                backend=self.backend,
            )
        body = "\n".join(lines[7:]).strip()
        commit = header.commit
        return Commit(
            hash=commit.hash,
            parents=commit.parents,
            author=commit.author,
            time=commit.time,
            time_offset=commit.time_offset,
            rel_date=commit.rel_date,
            ref_names=commit.ref_names,
            reflog_selector=commit.reflog_selector,
            subject=commit.subject,
            body=body or None,
        )

    async def is_binary(self, path: str, rev: Rev) -> bool:
        if rev.is_stage and (rev.stage or 0) > 0:
            return False

        args = ["-c", "submodule.recurse=false", "grep", "-I", "--name-only", "-e", "."]
        if rev.is_local:
            args.append("--untracked")
        elif rev.is_stage:
            args.append("--cached")
        else:
            args.append(str(rev.commit))
        result = await self._exec(*args, "--", self._relative(path))
        return not result.success

    # =====================================================================
    # Diff and history
    # =====================================================================

    async def diff(
        self,
        left: Rev,
        right: Rev,
        paths: Sequence[str] = (),
        *,
        show_untracked: bool | None = None,
    ) -> FileList:
        with repository_context(self._toplevel, self.backend):
            return await self._diff_builder.build(
                left,
                right,
                [self._relative(p) for p in paths],
                show_untracked=show_untracked,
            )

    async def _effective_options(self, options: LogOptions | None) -> tuple[LogOptions, bool]:
        requested = options or LogOptions()
        paths = [self._relative(p) for p in requested.path_args]
        single_file = await self.is_single_file(paths, requested.L)
        effective = self.config.file_history.defaults_for(single_file).merged(requested)
        effective.path_args = paths
        if effective.L:
            effective.follow = False
        return effective, single_file

    async def _prepare(self, options: LogOptions, single_file: bool) -> PreparedLogOptions:
        errors = GIT_FLAGS.validate(options)
        if errors:
            raise ValueError("; ".join(errors))

        rev_range = None
        if options.rev_range:
            ok, _ = await self.verify_rev_arg(options.rev_range)
            if ok:
                rev_range = options.rev_range
            else:
                logger.warning("bad_range_revision_ignored", rev_range=options.rev_range)

        base: Rev | None = None
        if options.base == "LOCAL":
            base = Rev.local()
        elif options.base:
            ok, out = await self.verify_rev_arg(options.base)
            if ok:
                base = Rev.at_commit(out[0].lstrip("^"))
            else:
                logger.warning("bad_base_revision_ignored", base=options.base)

        keys = [k for k in LOG_FLAG_ORDER if k != "follow" or single_file]
        return PreparedLogOptions(
            rev_range=rev_range,
            base=base,
            path_args=tuple(options.path_args),
            flags=tuple(GIT_FLAGS.render(options, keys)),
            line_trace=bool(options.L),
            follow=options.follow and single_file,
        )

    async def file_history(self, options: LogOptions | None = None) -> HistoryStream:
        """Start a streamed history query.

        Options not set explicitly take the configured single-file or
        multi-file defaults. A bad ``rev_range`` or ``base`` is ignored with
        a warning.

        Raises:
            ValueError: If an option value is not accepted by git.
        """
        with repository_context(self._toplevel, self.backend):
            effective, single_file = await self._effective_options(options)
            prepared = await self._prepare(effective, single_file)
            history = GitFileHistory(
                self, prepared, single_file=single_file, job_factory=self._job_factory
            )
            return history.start()

    async def file_history_dry_run(self, options: LogOptions | None = None) -> tuple[bool, str]:
        """Check that a history query would produce at least one commit.

        Returns:
            ``(ok, description)`` where the description summarizes the
            effective options.
        """
        effective, single_file = await self._effective_options(options)
        prepared = await self._prepare(effective, single_file)

        description = [f"Top-level path: '{self._toplevel}'"]
        if prepared.rev_range:
            description.append(f"Revision range: '{prepared.rev_range}'")
        description.append(f"Flags: {' '.join(prepared.flags)}")
        summary = ", ".join(description)

        # Tracing line ranges is too slow to probe
        if prepared.line_trace:
            return True, summary

        probe = effective.model_copy(update={"max_count": 1})
        keys = [k for k in LOG_FLAG_ORDER if k != "follow" or single_file]
        range_args = [prepared.rev_range] if prepared.rev_range else []
        result = await self._exec(
            "log",
            *range_args,
            "--pretty=format:%H",
            "--name-status",
            *GIT_FLAGS.render(probe, keys),
            "--",
            *prepared.path_args,
        )
        ok = result.success and not result.empty
        if not ok:
            logger.debug("file_history_dry_run_failed", summary=summary)
        return ok, summary

    # =====================================================================
    # Index and working tree
    # =====================================================================

    async def add_files(self, paths: Sequence[str]) -> bool:
        result = await self._exec("add", "--", *[self._relative(p) for p in paths])
        return result.success

    async def reset_files(self, paths: Sequence[str] = ()) -> bool:
        result = await self._exec("reset", "--", *[self._relative(p) for p in paths])
        return result.success

    async def restore_file(
        self,
        path: str,
        kind: FileKind,
        commit: str | None = None,
    ) -> RestoreResult:
        """Restore *path* and return a hint for undoing it.

        The current content is written to the object database first, so the
        undo hint can bring it back with ``git show``.
        """
        rel_path = self._relative(path)
        abs_path = self._toplevel / rel_path
        treeish = "HEAD" if kind is FileKind.STAGED else ""

        exists_git = (await self._exec("cat-file", "-e", f"{treeish}:{rel_path}")).success
        exists_local = abs_path.is_file()

        if exists_local:
            blob = await self._exec("hash-object", "-w", "--", rel_path)
            if not blob.success or not blob.lines:
                return RestoreResult(
                    ok=False,
                    message="Failed to write file blob into the object database",
                )
            undo = f"git show {blob.lines[0][:11]} > {rel_path}"
        else:
            undo = f"git rm {rel_path}"

        if not exists_git:
            if kind in (FileKind.WORKING, FileKind.CONFLICTING):
                # Untracked: no history to restore from
                try:
                    abs_path.unlink()
                except OSError as e:
                    return RestoreResult(ok=False, message=f"Failed to delete {abs_path}: {e}")
            else:
                result = await self._exec("rm", "-f", "--", rel_path)
                if not result.success:
                    return RestoreResult(ok=False, message=result.stderr.strip())
        else:
            source = commit or ("HEAD" if kind is FileKind.STAGED else None)
            args = ["checkout", *([source] if source else []), "--", rel_path]
            result = await self._exec(*args)
            if not result.success:
                return RestoreResult(ok=False, message=result.stderr.strip())

        logger.info("file_restored", path=rel_path, kind=kind.value, commit=commit)
        return RestoreResult(ok=True, undo=undo)


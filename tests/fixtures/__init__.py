"""Shared test fixtures for the revscope test suite.

Job Fixtures (from tests/fixtures/jobs.py)
-------------------------------------------

Classes:
    Script: Output, stderr and exit status replayed by a scripted job.

    ScriptedJob: A Job that replays a Script instead of spawning a process.
        Use :func:`scripted_job_factory` to bind a responder that picks the
        script from the command vector.

    RunnerScript: Canned CommandResult values for a mocked CommandRunner.

Fixtures:
    runner_script: A fresh RunnerScript per test.

    mock_runner: MagicMock CommandRunner whose ``run`` answers from
        ``runner_script``.

Example:
    >>> @pytest.mark.asyncio
    ... async def test_history(test_config, mock_runner):
    ...     job_type = scripted_job_factory(lambda command: Script(stdout=["x"]))
    ...     adapter = GitAdapter(tmp, config=test_config, runner=mock_runner,
    ...                          job_factory=job_type)
"""

from __future__ import annotations

from tests.fixtures.jobs import (
    RunnerScript,
    Script,
    ScriptedJob,
    mock_runner,
    result_of,
    runner_script,
    scripted_job_factory,
)

__all__ = [
    "RunnerScript",
    "Script",
    "ScriptedJob",
    "mock_runner",
    "result_of",
    "runner_script",
    "scripted_job_factory",
]

"""Build executor -- run a package's own build and test commands.

Each call is a single, non-retrying subprocess run in the package
directory, bounded by a wall-clock timeout.  Exit code and combined output
are the whole contract; interpreting failures is left to the compliance
gate and the orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shlex
import time
from dataclasses import dataclass
from pathlib import Path

from src.shared.constants import SECRET_ENV_KEYS
from src.suite_builder.config import ExecutorConfig

logger = logging.getLogger(__name__)

# Istanbul text summary: "All files |   82.5 |  ..." (first column is statements).
_ISTANBUL_RE = re.compile(r"All files\s*\|\s*([\d.]+)")
_COVERAGE_RE = re.compile(r"Coverage:\s*([\d.]+)%")
_OUTPUT_LIMIT = 200_000


@dataclass
class CommandResult:
    """Raw outcome of one subprocess run."""

    exit_code: int
    output: str
    duration_s: float
    timed_out: bool = False
    started: bool = True

    @property
    def success(self) -> bool:
        return self.started and not self.timed_out and self.exit_code == 0


@dataclass
class BuildResult:
    success: bool
    duration_s: float
    output: str
    exit_code: int = -1
    timed_out: bool = False


@dataclass
class TestRunResult:
    __test__ = False  # not a pytest test class

    success: bool
    duration_s: float
    coverage: float
    output: str
    exit_code: int = -1
    timed_out: bool = False


def _filtered_env() -> dict[str, str]:
    """Return ``os.environ`` minus secret keys."""
    return {k: v for k, v in os.environ.items() if k not in SECRET_ENV_KEYS}


def parse_coverage(output: str) -> float:
    """Extract a coverage percentage from test output; 0.0 when absent."""
    match = _ISTANBUL_RE.search(output) or _COVERAGE_RE.search(output)
    if not match:
        return 0.0
    try:
        return max(0.0, min(100.0, float(match.group(1))))
    except ValueError:
        return 0.0


async def run_command(
    command: str | list[str],
    cwd: Path,
    timeout_s: float,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Run *command* in *cwd* with stderr folded into stdout.

    A command that cannot be started (binary missing, bad cwd) yields
    ``started=False`` and exit code 127 rather than raising.
    """
    argv = shlex.split(command) if isinstance(command, str) else list(command)
    proc_env = env if env is not None else _filtered_env()
    start = time.monotonic()
    proc: asyncio.subprocess.Process | None = None
    chunks: list[bytes] = []
    exit_code = -1
    timed_out = False

    async def collect(process: asyncio.subprocess.Process) -> None:
        # Read incrementally so a timed-out command still reports what it printed.
        assert process.stdout is not None
        while True:
            chunk = await process.stdout.read(65536)
            if not chunk:
                break
            chunks.append(chunk)
        await process.wait()

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=proc_env,
        )
        await asyncio.wait_for(collect(proc), timeout=timeout_s)
        exit_code = proc.returncode if proc.returncode is not None else -1
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning("Command %r timed out after %ss in %s", argv[0], timeout_s, cwd)
    except (FileNotFoundError, NotADirectoryError, PermissionError) as exc:
        logger.warning("Command %r could not start in %s: %s", argv[0], cwd, exc)
        return CommandResult(
            exit_code=127,
            output=str(exc),
            duration_s=time.monotonic() - start,
            started=False,
        )
    finally:
        if proc is not None and proc.returncode is None:
            proc.kill()
            await proc.wait()

    output = b"".join(chunks)
    text = output.decode(errors="replace") if output else ""
    if len(text) > _OUTPUT_LIMIT:
        text = text[-_OUTPUT_LIMIT:]
    if timed_out:
        text += f"\n[timed out after {timeout_s}s]"
    return CommandResult(
        exit_code=exit_code,
        output=text,
        duration_s=time.monotonic() - start,
        timed_out=timed_out,
    )


class BuildExecutor:
    """Runs package build and test commands."""

    def __init__(self, workspace_root: Path | str, config: ExecutorConfig | None = None) -> None:
        self.workspace_root = Path(workspace_root)
        self.config = config or ExecutorConfig()

    def _package_dir(self, path: Path | str) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.workspace_root / path

    async def build(self, path: Path | str, command: str) -> BuildResult:
        result = await run_command(command, self._package_dir(path), self.config.build_timeout)
        logger.info(
            "Build %s in %s: exit=%d %.1fs",
            "passed" if result.success else "failed", path, result.exit_code, result.duration_s,
        )
        return BuildResult(
            success=result.success,
            duration_s=result.duration_s,
            output=result.output,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
        )

    async def test(self, path: Path | str, command: str) -> TestRunResult:
        result = await run_command(command, self._package_dir(path), self.config.test_timeout)
        coverage = parse_coverage(result.output)
        logger.info(
            "Tests %s in %s: exit=%d coverage=%.1f%% %.1fs",
            "passed" if result.success else "failed", path, result.exit_code,
            coverage, result.duration_s,
        )
        return TestRunResult(
            success=result.success,
            duration_s=result.duration_s,
            coverage=coverage,
            output=result.output,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
        )

"""Plan generation collaborator and plan document validation."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from src.shared.utils import unscoped_name
from src.suite_builder.executor import run_command
from src.suite_shared.constants import PLANS_DIR, REQUIRED_PLAN_SECTIONS

logger = logging.getLogger(__name__)


class PlanGenerationError(Exception):
    """Raised when the plan generator fails or produces an unusable plan."""

    def __init__(self, package_name: str, message: str) -> None:
        self.package_name = package_name
        super().__init__(f"Plan generation for '{package_name}' failed: {message}")


@dataclass
class GeneratedPlan:
    plan_path: str
    branch_ref: str


@dataclass
class PlanValidation:
    missing_sections: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.missing_sections


@runtime_checkable
class PlanGenerator(Protocol):
    """Writes an implementation plan for one package."""

    async def generate(self, package_name: str, dependencies: list[str], output_dir: Path) -> GeneratedPlan:
        """Write the plan under *output_dir*.

        Raises:
            PlanGenerationError: If no plan could be written.
        """
        ...


def plan_output_path(workspace_root: Path, package_name: str) -> Path:
    """Conventional location of the plan for *package_name*."""
    return workspace_root / PLANS_DIR / f"{unscoped_name(package_name)}.md"


def validate_plan(content: str) -> PlanValidation:
    """Check that a plan has Overview, Requirements, Implementation and Testing sections."""
    headings = [
        line.lstrip("#").strip().lower()
        for line in content.splitlines()
        if line.startswith("#")
    ]
    missing = [
        section
        for section, keywords in REQUIRED_PLAN_SECTIONS.items()
        if not any(keyword in heading for heading in headings for keyword in keywords)
    ]
    return PlanValidation(missing_sections=missing)


class CommandPlanGenerator:
    """Runs an external command that writes the plan file.

    The command line is a template; ``{package}``, ``{dependencies}`` (JSON
    list) and ``{output}`` are substituted.  The command may print a JSON
    object with ``plan_path`` and ``branch_ref`` on its last output line;
    otherwise the conventional plan path and ``plan/<name>`` are assumed.
    """

    def __init__(self, command: str, workspace_root: Path | str, timeout_s: int = 1800) -> None:
        self.command = command
        self.workspace_root = Path(workspace_root)
        self.timeout_s = timeout_s

    async def generate(self, package_name: str, dependencies: list[str], output_dir: Path) -> GeneratedPlan:
        output = output_dir / f"{unscoped_name(package_name)}.md"
        output.parent.mkdir(parents=True, exist_ok=True)
        argv = [
            part.format(
                package=package_name,
                dependencies=json.dumps(dependencies),
                output=str(output),
            )
            for part in self.command.split()
        ]
        result = await run_command(argv, self.workspace_root, self.timeout_s)
        if not result.success:
            raise PlanGenerationError(package_name, result.output.strip()[-500:] or f"exit {result.exit_code}")

        plan_path, branch_ref = _parse_generator_output(result.output)
        target = self.workspace_root / plan_path if plan_path else output
        if not target.is_file():
            raise PlanGenerationError(package_name, f"no plan written at {target}")
        validation = validate_plan(target.read_text(encoding="utf-8"))
        if not validation.valid:
            raise PlanGenerationError(
                package_name, "plan is missing sections: " + ", ".join(validation.missing_sections),
            )
        rel = target.resolve().relative_to(self.workspace_root.resolve()).as_posix()
        return GeneratedPlan(plan_path=rel, branch_ref=branch_ref or f"plan/{unscoped_name(package_name)}")


def _parse_generator_output(output: str) -> tuple[str, str]:
    lines = [line for line in output.strip().splitlines() if line.strip()]
    if not lines:
        return "", ""
    last = lines[-1].strip()
    if not re.match(r"^\{.*\}$", last):
        return "", ""
    try:
        data = json.loads(last)
    except json.JSONDecodeError:
        return "", ""
    return str(data.get("plan_path") or ""), str(data.get("branch_ref") or "")

"""Parser for implementation plan files."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_PRIORITY = "p2"

TITLE_PATTERN = re.compile(r"^#\s+(.+?)\s*$", re.MULTILINE)
PRIORITY_PATTERN = re.compile(r"^\s*\**priority\**:\**\s*(p[0-3])\b", re.IGNORECASE | re.MULTILINE)
EPIC_REF_PATTERN = re.compile(r"\*\*Epic(?: Issue)?:\*\*\s*#(\d+)", re.IGNORECASE)
GOAL_HEADING = re.compile(r"^#{2,3}\s+goal\b", re.IGNORECASE)
TASKS_HEADING = re.compile(r"^#{2,3}\s+(tasks|steps|checklist)\b", re.IGNORECASE)
TASK_HEADING = re.compile(r"^#{3,4}\s+(?:Task|Step)\s+\d+\s*[:.-]\s*(.+?)\s*$", re.IGNORECASE)
LIST_ITEM = re.compile(r"^[-*]\s+(?:\[[ xX]\]\s+)?(.+?)\s*$")


class PlanParseError(Exception):
    """A plan file could not be read or has no title."""


@dataclass
class PlanDocument:
    """What powerlevel needs from a plan to create an epic."""

    title: str
    goal: str = ""
    tasks: list[str] = field(default_factory=list)
    priority: str = DEFAULT_PRIORITY
    epic_number: int | None = None


def parse_plan(content: str) -> PlanDocument:
    """Parse plan markdown.

    Expected format:
    ```markdown
    # Feature Name

    priority: p1

    ## Goal

    What this achieves.

    ## Tasks

    - [ ] First task
    - Second task
    ```

    ``### Task N: ...`` headings are also collected as tasks, wherever
    they appear.

    Raises:
        PlanParseError: If the plan has no H1 title.
    """
    title_match = TITLE_PATTERN.search(content)
    if not title_match:
        raise PlanParseError("Plan has no '# Title' heading")

    priority_match = PRIORITY_PATTERN.search(content)
    epic_match = EPIC_REF_PATTERN.search(content)

    goal_lines: list[str] = []
    tasks: list[str] = []
    section: str | None = None

    for raw in content.splitlines():
        line = raw.strip()

        task_heading = TASK_HEADING.match(line)
        if task_heading:
            tasks.append(task_heading.group(1))
            continue

        if GOAL_HEADING.match(line):
            section = "goal"
            continue
        if TASKS_HEADING.match(line):
            section = "tasks"
            continue
        if line.startswith("##"):
            section = None
            continue

        if section == "goal" and line:
            goal_lines.append(line)
        elif section == "tasks":
            item = LIST_ITEM.match(line)
            if item:
                tasks.append(item.group(1))

    return PlanDocument(
        title=title_match.group(1),
        goal="\n".join(goal_lines),
        tasks=tasks,
        priority=priority_match.group(1).lower() if priority_match else DEFAULT_PRIORITY,
        epic_number=int(epic_match.group(1)) if epic_match else None,
    )


def parse_plan_file(plan_path: Path) -> PlanDocument:
    """Read and parse a plan file.

    Raises:
        PlanParseError: If the file is missing, unreadable or has no title.
    """
    try:
        content = plan_path.read_text(encoding="utf-8")
    except OSError as e:
        raise PlanParseError(f"Cannot read plan file {plan_path}: {e}") from e

    try:
        return parse_plan(content)
    except PlanParseError as e:
        raise PlanParseError(f"{plan_path}: {e}") from e

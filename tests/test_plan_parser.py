"""Tests for plan file parsing."""

from __future__ import annotations

from pathlib import Path

import pytest

from powerlevel.parsers.plan import PlanParseError, parse_plan, parse_plan_file

SAMPLE_PLAN = """# Feature X Implementation Plan

> **For Claude:** REQUIRED SUB-SKILL: Use superpowers:executing-plans to implement this plan task-by-task.

**Epic Issue:** #123
priority: P1

## Goal

Ship feature X
to all users.

## Architecture

Something about layers.
- not a task

## Tasks

- [ ] Build the thing
- [x] Write docs
* Add tests
"""


class TestParsePlan:
    """Test parsing plan markdown."""

    def test_sample_plan(self) -> None:
        """Test all fields of a typical plan."""
        plan = parse_plan(SAMPLE_PLAN)
        assert plan.title == "Feature X Implementation Plan"
        assert plan.goal == "Ship feature X\nto all users."
        assert plan.tasks == ["Build the thing", "Write docs", "Add tests"]
        assert plan.priority == "p1"
        assert plan.epic_number == 123

    def test_defaults(self) -> None:
        """Test a plan with only a title."""
        plan = parse_plan("# Tiny\n")
        assert plan.goal == ""
        assert plan.tasks == []
        assert plan.priority == "p2"
        assert plan.epic_number is None

    def test_task_headings(self) -> None:
        """Test that '### Task N:' headings are collected as tasks."""
        content = "# Plan\n\n### Task 1: Create models\n\nSteps...\n\n### Task 2: Wire CLI\n"
        assert parse_plan(content).tasks == ["Create models", "Wire CLI"]

    def test_steps_section(self) -> None:
        """Test that a Steps section counts as the task list."""
        content = "# Plan\n\n### Steps\n\n- one\n- two\n\n## Notes\n\n- ignored\n"
        assert parse_plan(content).tasks == ["one", "two"]

    def test_bold_priority(self) -> None:
        """Test a bold metadata priority line."""
        assert parse_plan("# Plan\n\n**Priority:** p0\n").priority == "p0"

    def test_missing_title(self) -> None:
        """Test that a plan without an H1 is rejected."""
        with pytest.raises(PlanParseError, match="no '# Title'"):
            parse_plan("## Goal\n\nNothing\n")


class TestParsePlanFile:
    """Test reading plan files."""

    def test_reads_file(self, tmp_path: Path) -> None:
        """Test parsing a plan from disk."""
        path = tmp_path / "feature.md"
        path.write_text(SAMPLE_PLAN, encoding="utf-8")
        assert parse_plan_file(path).title == "Feature X Implementation Plan"

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test that a missing file raises PlanParseError."""
        with pytest.raises(PlanParseError, match="Cannot read plan file"):
            parse_plan_file(tmp_path / "nope.md")

    def test_error_names_file(self, tmp_path: Path) -> None:
        """Test that parse errors mention the file."""
        path = tmp_path / "untitled.md"
        path.write_text("no heading\n", encoding="utf-8")
        with pytest.raises(PlanParseError, match="untitled.md"):
            parse_plan_file(path)

"""Tests for Jira bookmark and folder title formatting."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from marksync.models.storage import FolderTitleFormat, TitleFormatOptions
from marksync.providers.jira import build_folder_title, format_issue_title

NOW = datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc)


def _issue(**fields) -> dict:
    base = {
        "summary": "Fix critical login crash",
        "status": {"name": "In Progress"},
        "priority": {"name": "High"},
        "issuetype": {"name": "Bug"},
        "assignee": {"displayName": "Alice Smith"},
        "reporter": {"displayName": "Bob Jones"},
        "created": "2026-01-18T12:00:00.000+0000",
    }
    base.update(fields)
    return {"id": "10001", "key": "PROJ-123", "fields": base}


def _options(**flags) -> TitleFormatOptions:
    return TitleFormatOptions(**flags)


# ---------------------------------------------------------------------------
# Issue titles
# ---------------------------------------------------------------------------


class TestPlainTitle:
    def test_all_options_off(self) -> None:
        assert format_issue_title(_issue(), _options()) == "Fix critical login crash [PROJ-123]"

    def test_emojis_alone_stay_plain(self) -> None:
        title = format_issue_title(_issue(), _options(include_emojis=True))
        assert title == "Fix critical login crash [PROJ-123]"


class TestPriority:
    @pytest.mark.parametrize(
        "priority, expected",
        [
            ("Highest", "\N{LARGE RED CIRCLE}"),
            ("Blocker", "\N{LARGE RED CIRCLE}"),
            ("High", "\N{LARGE ORANGE CIRCLE}"),
            ("Medium", "\N{LARGE YELLOW CIRCLE}"),
            ("Low", "\N{LARGE GREEN CIRCLE}"),
            ("Lowest", "\N{LARGE BLUE CIRCLE}"),
        ],
    )
    def test_emoji(self, priority: str, expected: str) -> None:
        issue = _issue(priority={"name": priority})
        title = format_issue_title(issue, _options(include_priority=True))
        assert title == f"[PROJ-123] {expected} Fix critical login crash"

    def test_text_when_emojis_disabled(self) -> None:
        title = format_issue_title(_issue(), _options(include_priority=True, include_emojis=False))
        assert title == "[PROJ-123] [HIGH] Fix critical login crash"

    def test_unknown_priority_adds_nothing(self) -> None:
        issue = _issue(priority={"name": "Trivial"})
        title = format_issue_title(issue, _options(include_priority=True))
        assert title == "[PROJ-123] Fix critical login crash"


class TestIssueType:
    @pytest.mark.parametrize(
        "issue_type, expected",
        [
            ("Bug", "\N{BUG}"),
            ("Defect", "\N{BUG}"),
            ("Epic", "\N{BOOKS}"),
            ("User Story", "\N{OPEN BOOK}"),
            ("Task", "\N{WHITE HEAVY CHECK MARK}"),
            ("Sub-task", "\N{MEMO}"),
            ("Improvement", "\N{HIGH VOLTAGE SIGN}"),
            ("Spike", "\N{MICROSCOPE}"),
        ],
    )
    def test_emoji(self, issue_type: str, expected: str) -> None:
        issue = _issue(issuetype={"name": issue_type})
        title = format_issue_title(issue, _options(include_status=True))
        assert title == f"[PROJ-123] {expected} Fix critical login crash"

    def test_text_when_emojis_disabled(self) -> None:
        title = format_issue_title(_issue(), _options(include_status=True, include_emojis=False))
        assert title == "[PROJ-123] [BUG] Fix critical login crash"


class TestPeople:
    def test_assignee_first_name(self) -> None:
        title = format_issue_title(_issue(), _options(include_assignee=True))
        assert title == "[PROJ-123] \N{RIGHTWARDS ARROW}@Alice Fix critical login crash"

    def test_unassigned(self) -> None:
        title = format_issue_title(_issue(assignee=None), _options(include_assignee=True))
        assert "\N{RIGHTWARDS ARROW}@unassigned" in title

    def test_creator(self) -> None:
        title = format_issue_title(_issue(), _options(include_creator=True))
        assert title == "[PROJ-123] @Bob: Fix critical login crash"

    def test_missing_reporter_is_skipped(self) -> None:
        title = format_issue_title(_issue(reporter=None), _options(include_creator=True))
        assert title == "[PROJ-123] Fix critical login crash"


class TestAge:
    def test_recent_issue(self) -> None:
        title = format_issue_title(_issue(), _options(include_age=True), now=NOW)
        assert title == "[PROJ-123] 2d Fix critical login crash"

    def test_stale_issue_gets_clock(self) -> None:
        issue = _issue(created="2026-01-05T12:00:00.000+0000")
        title = format_issue_title(issue, _options(include_age=True), now=NOW)
        assert title == "[PROJ-123] \N{ALARM CLOCK} 15d Fix critical login crash"

    def test_text_when_emojis_disabled(self) -> None:
        issue = _issue(created="2026-01-05T12:00:00.000+0000")
        title = format_issue_title(
            issue, _options(include_age=True, include_emojis=False), now=NOW
        )
        assert title == "[PROJ-123] [15d] Fix critical login crash"


class TestCombined:
    def test_part_order(self) -> None:
        options = _options(
            include_priority=True,
            include_status=True,
            include_assignee=True,
            include_creator=True,
            include_age=True,
            include_emojis=False,
        )

        title = format_issue_title(_issue(), options, now=NOW)

        assert title == (
            "[PROJ-123] [HIGH] [BUG] \N{RIGHTWARDS ARROW}@Alice @Bob: [2d] Fix critical login crash"
        )

    def test_camel_case_options(self) -> None:
        options = TitleFormatOptions.model_validate({"includePriority": True, "includeEmojis": False})
        assert format_issue_title(_issue(), options) == "[PROJ-123] [HIGH] Fix critical login crash"


# ---------------------------------------------------------------------------
# Folder titles
# ---------------------------------------------------------------------------


class TestFolderTitle:
    def test_disabled(self) -> None:
        assert build_folder_title("Jira Work Items", 3, FolderTitleFormat()) is None

    def test_total(self) -> None:
        title = build_folder_title("Jira Work Items", 24, FolderTitleFormat(enabled=True))
        assert title == "Jira Work Items (24 total)"

    def test_empty(self) -> None:
        title = build_folder_title("Jira Work Items", 0, FolderTitleFormat(enabled=True))
        assert title == "Jira Work Items (empty)"

    def test_without_total(self) -> None:
        options = FolderTitleFormat(enabled=True, include_total=False)
        assert build_folder_title("Jira Work Items", 5, options) == "Jira Work Items"

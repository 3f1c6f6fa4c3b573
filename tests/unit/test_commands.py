"""
Unit tests for reply commands.

Tests cover:
- Argument helpers (due dates, labels, draft titles)
- Line scanning (recognition, fences, vocabulary, prefix)
- Interpretation against a noteable (permissions, no-ops, net effects)
"""

from datetime import date
from unittest.mock import patch

import pytest

from tracker.models.dynamo import AccessLevel
from tracker.state_machine import NoteableState


# ============================================================================
# Argument Helpers
# ============================================================================


class TestParseDueDate:
    """Tests for parse_due_date (reference date is Wednesday 2025-06-04)."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("today", date(2025, 6, 4)),
            ("tomorrow", date(2025, 6, 5)),
            ("Tomorrow ", date(2025, 6, 5)),
            ("yesterday", date(2025, 6, 3)),
            ("next week", date(2025, 6, 11)),
            ("2025-12-24", date(2025, 12, 24)),
            ("in 3 days", date(2025, 6, 7)),
            ("in 1 day", date(2025, 6, 5)),
            ("in 2 weeks", date(2025, 6, 18)),
            ("friday", date(2025, 6, 6)),
            ("monday", date(2025, 6, 9)),
            ("next friday", date(2025, 6, 6)),
        ],
    )
    def test_understood(self, today, text, expected):
        from lambdas.process_reply_email.commands import parse_due_date

        assert parse_due_date(text, today) == expected

    def test_same_weekday_is_next_week(self, today):
        """Naming today's weekday means the one a week out."""
        from lambdas.process_reply_email.commands import parse_due_date

        assert parse_due_date("wednesday", today) == date(2025, 6, 11)

    @pytest.mark.parametrize("text", ["someday", "2025-02-30", "in a while", "06/05/2025", ""])
    def test_not_understood(self, today, text):
        from lambdas.process_reply_email.commands import parse_due_date

        assert parse_due_date(text, today) is None


class TestParseLabels:
    """Tests for parse_labels."""

    def test_tilde_and_quoted_labels(self):
        from lambdas.process_reply_email.commands import parse_labels

        assert parse_labels('~bug ~"needs review" feature') == ["bug", "needs review", "feature"]

    def test_commas_and_duplicates(self):
        from lambdas.process_reply_email.commands import parse_labels

        assert parse_labels("~bug, ~docs, ~bug") == ["bug", "docs"]


class TestDraftTitles:
    """Tests for the draft title helpers."""

    @pytest.mark.parametrize(
        "title",
        ["Draft: Add guide", "[Draft] Add guide", "(draft) Add guide", "WIP: Add guide", "[WIP] Add guide"],
    )
    def test_draft_prefixes(self, title):
        from lambdas.process_reply_email.commands import is_draft_title, strip_draft_prefix

        assert is_draft_title(title)
        assert strip_draft_prefix(title) == "Add guide"

    def test_plain_title(self):
        from lambdas.process_reply_email.commands import is_draft_title

        assert not is_draft_title("Drafting the guide")


# ============================================================================
# Line Scanning
# ============================================================================


class TestParseCommands:
    """Tests for parse_commands."""

    def test_splits_commands_from_prose(self, settings):
        from lambdas.process_reply_email.commands import parse_commands

        commands, residual = parse_commands("Cool!\n\n/close\n/due tomorrow", settings)

        assert [(c.name, c.args, c.line_number) for c in commands] == [
            ("close", "", 3),
            ("due", "tomorrow", 4),
        ]
        assert residual == "Cool!"

    def test_case_insensitive_names_and_indentation(self, settings):
        from lambdas.process_reply_email.commands import parse_commands

        commands, residual = parse_commands("  /Close  \n/TODO", settings)

        assert [c.name for c in commands] == ["close", "todo"]
        assert residual == ""

    @pytest.mark.parametrize(
        "line",
        [
            "/close now",  # close takes no arguments
            "/title",  # title needs one
            "/due",
            "/frobnicate",  # not in the vocabulary
            "see /close below",  # not a whole line
            "//close",
        ],
    )
    def test_lines_that_stay_prose(self, settings, line):
        from lambdas.process_reply_email.commands import parse_commands

        commands, residual = parse_commands(line, settings)

        assert commands == []
        assert residual == line

    def test_fenced_code_is_prose(self, settings):
        """Commands inside code fences are examples, not commands."""
        from lambdas.process_reply_email.commands import parse_commands

        text = "Try this:\n```\n/close\n```\n~~~\n/todo\n~~~\n/label ~docs"

        commands, residual = parse_commands(text, settings)

        assert [c.name for c in commands] == ["label"]
        assert "/close" in residual
        assert "/todo" in residual
        assert "/label" not in residual

    def test_unlabel_without_arguments(self, settings):
        from lambdas.process_reply_email.commands import parse_commands

        commands, _ = parse_commands("/unlabel", settings)

        assert commands[0].name == "unlabel"
        assert commands[0].args == ""

    def test_disabled_command_is_prose(self):
        from lambdas.process_reply_email.commands import parse_commands
        from tracker.config import Settings

        settings = Settings(enabled_commands=["close"])

        commands, residual = parse_commands("/close\n/todo", settings)

        assert [c.name for c in commands] == ["close"]
        assert residual == "/todo"

    def test_custom_prefix(self):
        from lambdas.process_reply_email.commands import parse_commands
        from tracker.config import Settings

        settings = Settings(command_prefix="!")

        commands, residual = parse_commands("!close\n/todo", settings)

        assert [c.name for c in commands] == ["close"]
        assert residual == "/todo"


# ============================================================================
# Interpretation
# ============================================================================


@pytest.fixture
def developer(mock_dynamodb, project_id, user_id):
    from tracker.tools.dynamodb import add_project_member

    return add_project_member(project_id, user_id, AccessLevel.DEVELOPER)


@pytest.fixture
def guest(mock_dynamodb, project_id, user_id):
    from tracker.tools.dynamodb import add_project_member

    return add_project_member(project_id, user_id, AccessLevel.GUEST)


class TestInterpretCommandsAuthorized:
    """Commands from a user allowed to run them."""

    def test_commands_only_reply(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("/close\n/todo\n/due tomorrow", issue, identity, settings, today=today)

        assert result.applied == ("close", "todo", "due")
        assert result.commands_only is True
        assert result.body == ""
        assert result.mutations.changed_attributes(issue) == {
            "state": NoteableState.CLOSED,
            "due_date": date(2025, 6, 5),
        }
        assert result.mutations.todo == "add"

    def test_prose_with_commands(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("Cool!\n/close", issue, identity, settings, today=today)

        assert result.body == "Cool!"
        assert result.commands_only is False
        assert [command.name for command in result.commands] == ["close"]

    def test_no_commands(self, issue, identity, settings):
        """Plain prose never touches storage."""
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("Just a comment.", issue, identity, settings)

        assert result.body == "Just a comment."
        assert result.commands == ()
        assert result.mutations.apply_to(issue) is None

    def test_later_command_wins(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands(
            "/title First\n/title Second\n/due tomorrow\n/due friday",
            issue,
            identity,
            settings,
            today=today,
        )

        updated = result.mutations.apply_to(issue)
        assert updated.title == "Second"
        assert updated.due_date == date(2025, 6, 6)
        assert updated.version == issue.version + 1

    def test_close_then_reopen_is_net_zero(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("/close\n/reopen", issue, identity, settings, today=today)

        assert result.applied == ("close", "reopen")
        assert result.mutations.changed_attributes(issue) == {}
        assert result.mutations.apply_to(issue) is None
        assert not result.mutations.has_effect(issue)

    def test_reopen_open_issue_is_no_op(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("/reopen", issue, identity, settings, today=today)

        assert result.applied == ()
        assert result.commands_only is True

    def test_unsupported_command_is_stripped(self, developer, issue, identity, settings, today):
        """/wip means nothing on an issue but is still removed from the body."""
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("Noted.\n/wip", issue, identity, settings, today=today)

        assert result.applied == ()
        assert result.body == "Noted."

    def test_unparseable_due_date_is_no_op(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("/due someday", issue, identity, settings, today=today)

        assert result.applied == ()
        assert result.body == ""

    def test_labels(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        labelled = issue.model_copy(update={"labels": ["bug", "docs"]})

        result = interpret_commands(
            "/label ~feature ~bug\n/unlabel ~docs",
            labelled,
            identity,
            settings,
            today=today,
        )

        assert result.mutations.changed_attributes(labelled) == {"labels": ["bug", "feature"]}

    def test_unlabel_all(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        labelled = issue.model_copy(update={"labels": ["bug", "docs"]})

        result = interpret_commands("/unlabel", labelled, identity, settings, today=today)

        assert result.mutations.changed_attributes(labelled) == {"labels": []}

    def test_remove_due_date(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        due = issue.model_copy(update={"due_date": date(2025, 6, 1)})

        result = interpret_commands("/remove_due_date", due, identity, settings, today=today)

        assert result.mutations.changed_attributes(due) == {"due_date": None}

    def test_subscribe(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("/subscribe", issue, identity, settings, today=today)

        assert result.mutations.changed_attributes(issue) == {"subscribers": [identity.user_id]}

    def test_wip_toggles_draft_prefix(self, developer, merge_request, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("/wip", merge_request, identity, settings, today=today)
        assert result.mutations.value(merge_request, "title") == "Draft: Add episode guide"

        drafted = merge_request.model_copy(update={"title": "WIP: Add episode guide"})
        result = interpret_commands("/wip", drafted, identity, settings, today=today)
        assert result.mutations.value(drafted, "title") == "Add episode guide"

    def test_due_unsupported_on_merge_request(self, developer, merge_request, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("/due tomorrow", merge_request, identity, settings, today=today)

        assert result.applied == ()


class TestInterpretCommandsTodos:
    """The /todo and /done personal commands."""

    def test_done_without_pending_todo(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("/done", issue, identity, settings, today=today)

        assert result.applied == ()
        assert result.mutations.todo is None

    def test_todo_then_done_cancels(self, developer, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("/todo\n/done", issue, identity, settings, today=today)

        assert result.applied == ("todo", "done")
        assert result.mutations.todo is None

    def test_existing_todo(self, developer, issue, identity, settings, today):
        """A pending todo makes /todo a no-op and /done marks it done."""
        from lambdas.process_reply_email.commands import interpret_commands
        from tracker.models.dynamo import Todo
        from tracker.tools.dynamodb import _get_table

        _get_table().put_item(
            Item=Todo(
                user_id=identity.user_id,
                noteable_type=issue.noteable_type,
                noteable_id=issue.noteable_id,
                project_id=issue.project_id,
            ).to_dynamodb()
        )

        result = interpret_commands("/todo\n/done", issue, identity, settings, today=today)

        assert result.applied == ("done",)
        assert result.mutations.todo == "done"


class TestInterpretCommandsUnauthorized:
    """Commands from users without the required access."""

    def test_non_member_gets_nothing(self, mock_dynamodb, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("/close\n/todo\n/due tomorrow", issue, identity, settings, today=today)

        assert result.applied == ()
        assert result.commands_only is True
        assert not result.mutations.has_effect(issue)

    def test_guest_gets_personal_commands_only(self, guest, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        result = interpret_commands("Cool!\n/close\n/todo", issue, identity, settings, today=today)

        assert result.applied == ("todo",)
        assert result.mutations.changed_attributes(issue) == {}
        assert result.mutations.todo == "add"
        assert result.body == "Cool!"

    def test_permission_checked_once_per_command(self, issue, identity, settings, today):
        from lambdas.process_reply_email.commands import interpret_commands

        with patch(
            "lambdas.process_reply_email.commands.can_mutate",
            return_value=True,
        ) as mock_can_mutate:
            result = interpret_commands("/label ~a\n/label ~b", issue, identity, settings, today=today)

        mock_can_mutate.assert_called_once_with(identity, issue, "label")
        assert result.mutations.changed_attributes(issue) == {"labels": ["a", "b"]}

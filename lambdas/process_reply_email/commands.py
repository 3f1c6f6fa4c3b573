"""
Reply Commands

Parses slash commands out of reply text and folds the authorized ones into
queued noteable mutations. Nothing is written here: the queued mutations
are committed by the note transaction together with the notes.

Recognition rules:
- A command is a whole line: <prefix><name> [arguments]
- The name must be in the enabled vocabulary (case-insensitive)
- The arguments must fit the command, otherwise the line stays prose
- Lines inside fenced code blocks are always prose

A recognized command is removed from the note body even when it has no
effect: unsupported for the noteable type, a no-op in the current state,
or not permitted for the acting user. Such commands are dropped silently.
"""

import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Final, Literal

import structlog

from tracker.config import Settings
from tracker.models.dynamo import Identity, Noteable
from tracker.state_machine import NoteableState, can_transition
from tracker.tools.dynamodb import todo_exists
from tracker.tools.permissions import can_mutate

log = structlog.get_logger()

NO_ARGS: Final = re.compile(r"^$")
REQUIRED_ARGS: Final = re.compile(r"^\S.*$")
OPTIONAL_ARGS: Final = re.compile(r"^.*$")

_FENCE = re.compile(r"^\s*(```|~~~)")
_LABEL_TOKEN = re.compile(r'~"([^"]+)"|~([^\s,]+)|"([^"]+)"|([^\s,]+)')
_DRAFT_PREFIX = re.compile(
    r"^\s*(?:\[draft\]\s*|\(draft\)\s*|draft:\s*|\[wip\]\s*|wip:\s*)+",
    re.IGNORECASE,
)
DRAFT_TITLE_PREFIX: Final[str] = "Draft: "

WEEKDAYS: Final[tuple[str, ...]] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


@dataclass(frozen=True)
class CommandDefinition:
    """A command in the reply vocabulary."""

    name: str
    args_pattern: re.Pattern[str]
    description: str


COMMAND_DEFINITIONS: Final[dict[str, CommandDefinition]] = {
    definition.name: definition
    for definition in (
        CommandDefinition("close", NO_ARGS, "Close this issue or merge request"),
        CommandDefinition("reopen", NO_ARGS, "Reopen this issue or merge request"),
        CommandDefinition("title", REQUIRED_ARGS, "Change title"),
        CommandDefinition("label", REQUIRED_ARGS, "Add one or more labels"),
        CommandDefinition("unlabel", OPTIONAL_ARGS, "Remove some or all labels"),
        CommandDefinition("due", REQUIRED_ARGS, "Set due date"),
        CommandDefinition("remove_due_date", NO_ARGS, "Remove due date"),
        CommandDefinition("todo", NO_ARGS, "Add a todo"),
        CommandDefinition("done", NO_ARGS, "Mark todo as done"),
        CommandDefinition("subscribe", NO_ARGS, "Subscribe"),
        CommandDefinition("unsubscribe", NO_ARGS, "Unsubscribe"),
        CommandDefinition("wip", NO_ARGS, "Toggle the draft status"),
    )
}


@dataclass(frozen=True)
class ParsedCommand:
    """A command line found in the reply."""

    name: str
    args: str
    line_number: int


@dataclass
class QueuedMutations:
    """
    Final values for the noteable attributes touched by authorized commands.

    Later commands on the same attribute overwrite earlier ones; the
    effective value of an attribute is the queued one if any, else the
    noteable's own.
    """

    attributes: dict[str, Any] = field(default_factory=dict)
    todo: Literal["add", "done"] | None = None

    def value(self, noteable: Noteable, name: str) -> Any:
        if name in self.attributes:
            return self.attributes[name]
        return getattr(noteable, name)

    def set(self, name: str, value: Any) -> None:
        self.attributes[name] = value

    def changed_attributes(self, noteable: Noteable) -> dict[str, Any]:
        """Queued attributes whose final value differs from the noteable's."""
        return {
            name: value
            for name, value in self.attributes.items()
            if value != getattr(noteable, name)
        }

    def has_effect(self, noteable: Noteable) -> bool:
        return bool(self.changed_attributes(noteable)) or self.todo is not None

    def apply_to(self, noteable: Noteable) -> Noteable | None:
        """The updated noteable, or None when no attribute actually changes."""
        changes = self.changed_attributes(noteable)
        if not changes:
            return None
        return noteable.with_updates(**changes)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of command interpretation."""

    body: str
    commands: tuple[ParsedCommand, ...] = ()
    applied: tuple[str, ...] = ()
    mutations: QueuedMutations = field(default_factory=QueuedMutations)
    commands_only: bool = False


# =====================================================
# Argument parsing
# =====================================================


def parse_due_date(text: str, today: date | None = None) -> date | None:
    """
    Parse a due date argument.

    Accepts today, tomorrow, yesterday, YYYY-MM-DD, "in N days",
    "in N weeks", "next week" and weekday names (next occurrence,
    optionally prefixed with "next").

    Returns:
        The date, or None if the text is not understood
    """
    today = today or date.today()
    value = " ".join(text.strip().lower().split())

    if value == "today":
        return today
    if value == "tomorrow":
        return today + timedelta(days=1)
    if value == "yesterday":
        return today - timedelta(days=1)
    if value == "next week":
        return today + timedelta(weeks=1)

    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", value):
        try:
            return date.fromisoformat(value)
        except ValueError:
            return None

    match = re.fullmatch(r"in (\d{1,4}) (day|week)s?", value)
    if match:
        amount = int(match.group(1))
        if match.group(2) == "week":
            return today + timedelta(weeks=amount)
        return today + timedelta(days=amount)

    weekday = value.removeprefix("next ")
    if weekday in WEEKDAYS:
        ahead = (WEEKDAYS.index(weekday) - today.weekday()) % 7 or 7
        return today + timedelta(days=ahead)

    return None


def parse_labels(text: str) -> list[str]:
    """Split a label argument: ~bug ~"needs review" or plain names."""
    labels = []
    for match in _LABEL_TOKEN.finditer(text):
        name = next(group for group in match.groups() if group is not None).strip()
        if name and name not in labels:
            labels.append(name)
    return labels


def is_draft_title(title: str) -> bool:
    return bool(_DRAFT_PREFIX.match(title))


def strip_draft_prefix(title: str) -> str:
    return _DRAFT_PREFIX.sub("", title, count=1).strip()


# =====================================================
# Line scanning
# =====================================================


def _command_line_regex(prefix: str) -> re.Pattern[str]:
    return re.compile(
        rf"^\s*{re.escape(prefix)}(?P<name>[a-z_]+)(?:\s+(?P<args>.*?))?\s*$",
        re.IGNORECASE,
    )


def parse_commands(text: str, settings: Settings) -> tuple[list[ParsedCommand], str]:
    """
    Split reply text into command lines and residual prose.

    Returns:
        Tuple of (commands in text order, residual body)
    """
    enabled = {name.lower() for name in settings.enabled_commands} & COMMAND_DEFINITIONS.keys()
    line_regex = _command_line_regex(settings.command_prefix)

    commands: list[ParsedCommand] = []
    prose: list[str] = []
    in_fence = False

    for number, line in enumerate(text.split("\n"), start=1):
        if _FENCE.match(line):
            in_fence = not in_fence
            prose.append(line)
            continue
        if in_fence:
            prose.append(line)
            continue

        match = line_regex.match(line)
        if match:
            name = match.group("name").lower()
            args = (match.group("args") or "").strip()
            if name in enabled and COMMAND_DEFINITIONS[name].args_pattern.match(args):
                commands.append(ParsedCommand(name=name, args=args, line_number=number))
                continue
        prose.append(line)

    return commands, "\n".join(prose).strip()


# =====================================================
# Interpretation
# =====================================================


class CommandInterpreter:
    """
    Applies parsed commands, in order, to a set of queued mutations.

    Each _apply_<name> method returns True when the command had an effect
    and False when it was a no-op for the noteable's effective state.
    """

    def __init__(
        self,
        noteable: Noteable,
        identity: Identity,
        *,
        today: date | None = None,
    ) -> None:
        self.noteable = noteable
        self.identity = identity
        self.today = today or date.today()
        self.mutations = QueuedMutations()
        self._permissions: dict[str, bool] = {}
        self._todo_pending: bool | None = None

    def _allowed(self, name: str) -> bool:
        if name not in self._permissions:
            self._permissions[name] = can_mutate(self.identity, self.noteable, name)
        return self._permissions[name]

    def _value(self, name: str) -> Any:
        return self.mutations.value(self.noteable, name)

    def _has_pending_todo(self) -> bool:
        if self.mutations.todo is not None:
            return self.mutations.todo == "add"
        if self._todo_pending is None:
            self._todo_pending = todo_exists(self.identity.user_id, self.noteable.ref)
        return self._todo_pending

    def apply(self, command: ParsedCommand) -> bool:
        """
        Apply one command if it is supported, permitted and not a no-op.

        Returns:
            True if the command was applied
        """
        if command.name not in self.noteable.supported_commands:
            log.info(
                "command_dropped",
                command=command.name,
                reason="unsupported",
                noteable_type=self.noteable.noteable_type.value,
            )
            return False

        if not self._allowed(command.name):
            log.info(
                "command_dropped",
                command=command.name,
                reason="unauthorized",
                user_id=self.identity.user_id,
            )
            return False

        handler = getattr(self, f"_apply_{command.name}")
        applied = handler(command.args)
        if not applied:
            log.info("command_dropped", command=command.name, reason="no_op", args=command.args)
        return applied

    def _set_state(self, new_state: NoteableState) -> bool:
        current = self._value("state")
        if not can_transition(self.noteable.noteable_type, current, new_state):
            return False
        self.mutations.set("state", new_state)
        return True

    def _apply_close(self, args: str) -> bool:
        return self._set_state(NoteableState.CLOSED)

    def _apply_reopen(self, args: str) -> bool:
        return self._set_state(NoteableState.OPENED)

    def _apply_title(self, args: str) -> bool:
        if args == self._value("title"):
            return False
        self.mutations.set("title", args)
        return True

    def _apply_label(self, args: str) -> bool:
        current = list(self._value("labels"))
        added = [label for label in parse_labels(args) if label not in current]
        if not added:
            return False
        self.mutations.set("labels", current + added)
        return True

    def _apply_unlabel(self, args: str) -> bool:
        current = list(self._value("labels"))
        if not current:
            return False
        if not args:
            self.mutations.set("labels", [])
            return True
        removed = set(parse_labels(args))
        remaining = [label for label in current if label not in removed]
        if remaining == current:
            return False
        self.mutations.set("labels", remaining)
        return True

    def _apply_due(self, args: str) -> bool:
        due_date = parse_due_date(args, self.today)
        if due_date is None or due_date == self._value("due_date"):
            return False
        self.mutations.set("due_date", due_date)
        return True

    def _apply_remove_due_date(self, args: str) -> bool:
        if self._value("due_date") is None:
            return False
        self.mutations.set("due_date", None)
        return True

    def _apply_todo(self, args: str) -> bool:
        if self._has_pending_todo():
            return False
        self.mutations.todo = "add"
        return True

    def _apply_done(self, args: str) -> bool:
        if not self._has_pending_todo():
            return False
        # A todo queued by this same reply is simply cancelled
        self.mutations.todo = None if self.mutations.todo == "add" else "done"
        return True

    def _apply_subscribe(self, args: str) -> bool:
        subscribers = list(self._value("subscribers"))
        if self.identity.user_id in subscribers:
            return False
        self.mutations.set("subscribers", subscribers + [self.identity.user_id])
        return True

    def _apply_unsubscribe(self, args: str) -> bool:
        subscribers = list(self._value("subscribers"))
        if self.identity.user_id not in subscribers:
            return False
        self.mutations.set(
            "subscribers",
            [user_id for user_id in subscribers if user_id != self.identity.user_id],
        )
        return True

    def _apply_wip(self, args: str) -> bool:
        title = self._value("title")
        if is_draft_title(title):
            self.mutations.set("title", strip_draft_prefix(title))
        else:
            self.mutations.set("title", f"{DRAFT_TITLE_PREFIX}{title}")
        return True


def interpret_commands(
    text: str,
    noteable: Noteable,
    identity: Identity,
    settings: Settings,
    *,
    today: date | None = None,
) -> CommandResult:
    """
    Parse and authorize the commands in a reply.

    Args:
        text: Reply content with quotes and signature already removed
        noteable: Target noteable as read at the start of the invocation
        identity: User the reply acts for
        settings: Supplies the command prefix and enabled vocabulary
        today: Reference date for relative due dates (defaults to today)

    Returns:
        CommandResult with the residual body and queued mutations
    """
    commands, residual = parse_commands(text, settings)
    if not commands:
        return CommandResult(body=residual)

    interpreter = CommandInterpreter(noteable, identity, today=today)
    applied = [command.name for command in commands if interpreter.apply(command)]

    result = CommandResult(
        body=residual,
        commands=tuple(commands),
        applied=tuple(applied),
        mutations=interpreter.mutations,
        commands_only=not residual,
    )

    log.info(
        "commands_interpreted",
        noteable_type=noteable.noteable_type.value,
        noteable_id=noteable.noteable_id,
        commands=[command.name for command in commands],
        applied=applied,
        changed=sorted(interpreter.mutations.changed_attributes(noteable)),
        todo=interpreter.mutations.todo,
        commands_only=result.commands_only,
    )
    return result

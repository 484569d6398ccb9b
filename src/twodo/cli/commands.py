# src/twodo/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Coroutine
from datetime import datetime, time
from typing import Any, TypeVar, cast

from ..core.errors import StoreError
from ..core.session import TaskSession
from ..core.state import AppState
from ..tasks.milestones import week_start, weekly_completed_count
from ..tasks.task_models import ChecklistItem, Priority, Task, TaskDraft, TaskStatus, Visibility
from ..tasks.task_views import SortBy, filter_by_tag, history, my_list, shared_list, sort_tasks

CommandEmitter = Callable[[str], None]
CommandHandler4 = Callable[[AppState, list[str], str | None, str | None], str]
CommandHandler5 = Callable[
    [AppState, list[str], str | None, str | None, CommandEmitter | None], str
]
CommandHandler = CommandHandler4 | CommandHandler5

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        user_id: str | None = None,
        room_id: str | None = None,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 5

        if nparams >= 5:
            h5 = cast(CommandHandler5, handler)
            return h5(state, args, user_id, room_id, emit)

        h4 = cast(CommandHandler4, handler)
        return h4(state, args, user_id, room_id)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


class CommandError(Exception):
    """User-facing command failure; the message is printed as-is."""


# ---- helpers ----


def _session(state: AppState) -> TaskSession:
    if state.session is None or state.loop is None:
        raise CommandError("Not signed in (no active session).")
    return state.session


def _call(state: AppState, coro: Coroutine[Any, Any, T]) -> T:
    """Run a session coroutine on the background loop and wait for it."""
    if state.loop is None:
        coro.close()
        raise CommandError("Not signed in (no active session).")
    return state.loop.call(coro)


def _resolve(session: TaskSession, ref: str) -> Task:
    """Find a task by full id or unique id prefix."""
    ref = ref.strip().lstrip("#")
    if not ref:
        raise CommandError("Missing task id.")
    exact = session.engine.get(ref)
    if exact is not None:
        return exact
    matches = [t for t in session.tasks if t.id.startswith(ref)]
    if not matches:
        raise CommandError(f"No task with id {ref!r}.")
    if len(matches) > 1:
        raise CommandError(f"Task id {ref!r} is ambiguous ({len(matches)} matches).")
    return matches[0]


def parse_due(raw: str) -> datetime | None:
    """
    'none' -> None; 'YYYY-MM-DD' -> end of that local day;
    'YYYY-MM-DDTHH:MM' -> local time unless an offset is given.
    """
    raw = raw.strip()
    if raw.lower() in ("none", "-", ""):
        return None
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        raise CommandError(f"Bad date {raw!r}; use YYYY-MM-DD or YYYY-MM-DDTHH:MM.") from None
    if "T" not in raw and " " not in raw:
        dt = datetime.combine(dt.date(), time(23, 59))
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt


def _parse_priority(raw: str) -> Priority:
    try:
        return Priority(raw.lower())
    except ValueError:
        raise CommandError("Priority must be low, medium or high.") from None


def _fmt_local(dt: datetime) -> str:
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


def render_task(task: Task, me: str) -> str:
    mark = {TaskStatus.COMPLETED: "x", TaskStatus.PAST_DUE: "!"}.get(task.status, " ")
    bits: list[str] = [task.priority.value]
    if task.due_at is not None:
        bits.append(f"due {_fmt_local(task.due_at)}")
    if task.is_shared:
        bits.append("shared")
    if task.assignee_id and task.assignee_id != me:
        bits.append("partner's")
    elif task.assignee_id == me and task.creator_id != me:
        bits.append("from partner")
    bits.extend(f"#{tag}" for tag in task.tags)
    line = f"[{mark}] {task.id[:8]}  {task.title}  ({', '.join(bits)})"
    if task.checklist:
        done = sum(1 for c in task.checklist if c.is_completed)
        line += f" [{done}/{len(task.checklist)}]"
    return line


def _failed(action: str, e: StoreError) -> str:
    logger.info("Command failed: %s: %s", action, e)
    return f"Failed to {action}: {e.message}"


# ---- commands ----


def cmd_help(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    return registry.build_help()


def cmd_status(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    backend = str(getattr(state.settings, "backend", "local"))
    profile = state.profile
    if profile is None or state.session is None:
        return f"Status:\n  Backend: {backend}\n  Session: not signed in"

    session = state.session
    tasks = session.tasks
    since = week_start(datetime.now().astimezone(), getattr(state.settings, "week_start_day", 6))
    partner = profile.partner_name or profile.partner_id or "not linked"
    return (
        "Status:\n"
        f"  Backend: {backend}\n"
        f"  User: {profile.name} ({profile.id})\n"
        f"  Partner: {partner}\n"
        f"  Tasks: {len(my_list(tasks, profile.id))} mine, {len(shared_list(tasks))} shared, "
        f"{len(history(tasks))} done\n"
        f"  Completed this week: {weekly_completed_count(tasks, since)}"
    )


_LIST_VIEWS = ("mine", "shared", "history")
_SORT_ALIASES = {
    "created": SortBy.CREATED,
    "priority": SortBy.PRIORITY,
    "due": SortBy.DUE_DATE,
    "due_date": SortBy.DUE_DATE,
}


def cmd_tasks(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    """
    /tasks [mine|shared|history] [created|priority|due] [#tag]
    """
    try:
        session = _session(state)
    except CommandError as e:
        return str(e)

    view, sort_by, tag = "mine", SortBy.CREATED, None
    for arg in args:
        low = arg.lower()
        if low in _LIST_VIEWS:
            view = low
        elif low in _SORT_ALIASES:
            sort_by = _SORT_ALIASES[low]
        elif arg.startswith("#"):
            tag = arg[1:] or None
        else:
            return "Usage: /tasks [mine|shared|history] [created|priority|due] [#tag]"

    me = session.profile.id
    tasks = session.tasks
    if view == "mine":
        selected = my_list(tasks, me)
    elif view == "shared":
        selected = shared_list(tasks)
    else:
        selected = history(tasks)

    selected = sort_tasks(filter_by_tag(selected, tag), sort_by)
    if not selected:
        return f"No tasks ({view}{', #' + tag if tag else ''})."
    lines = [f"Tasks ({view}, {len(selected)}):"]
    lines.extend(f"  {render_task(t, me)}" for t in selected)
    return "\n".join(lines)


def parse_add_args(args: list[str], *, creator_id: str, partner_id: str | None) -> TaskDraft:
    """
    /add [--shared] [--high|--medium|--low] [--due DATE] [--partner] [--desc TEXT...--] [#tag ...] title...
    """
    draft = TaskDraft(title="", creator_id=creator_id)
    words: list[str] = []
    it = iter(args)
    for arg in it:
        low = arg.lower()
        if low == "--shared":
            draft.visibility = Visibility.SHARED
        elif low in ("--high", "--medium", "--low"):
            draft.priority = Priority(low[2:])
        elif low == "--due":
            draft.due_at = parse_due(next(it, ""))
        elif low == "--partner":
            if not partner_id:
                raise CommandError("No partner linked; cannot assign to partner.")
            draft.assignee_id = partner_id
            draft.visibility = Visibility.SHARED
        elif low == "--item":
            text = next(it, "").replace("_", " ").strip()
            if text:
                draft.checklist.append(ChecklistItem.new(text))
        elif arg.startswith("#") and len(arg) > 1:
            draft.tags.append(arg[1:])
        else:
            words.append(arg)

    draft.title = " ".join(words).strip()
    if not draft.title:
        raise CommandError("Usage: /add [--shared] [--high|--low] [--due DATE] [--partner] [--item text] [#tag] title")
    return draft


def cmd_add(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    try:
        session = _session(state)
        draft = parse_add_args(args, creator_id=session.profile.id, partner_id=session.profile.partner_id)
        task = _call(state, session.add_task(draft))
    except CommandError as e:
        return str(e)
    except StoreError as e:
        return _failed("add task", e)
    if task is None:
        return "Session closed before the task was saved."
    return f"Added: {render_task(task, session.profile.id)}"


def cmd_done(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    if not args:
        return "Usage: /done <id>"
    try:
        session = _session(state)
        task = _resolve(session, args[0])
        status = _call(state, session.toggle_task_completion(task.id))
    except CommandError as e:
        return str(e)
    except StoreError as e:
        return _failed("update task", e)
    if status == TaskStatus.COMPLETED:
        return f"Completed: {task.title}"
    return f"Reopened: {task.title}"


_EDIT_FIELDS = ("title", "desc", "priority", "due", "tags", "shared", "private")


def cmd_edit(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    """
    /edit <id> title <text...> | desc <text...> | priority <p> | due <date|none>
         | tags <a,b,...> | shared | private
    """
    usage = "Usage: /edit <id> title|desc|priority|due|tags|shared|private [value]"
    if len(args) < 2 or args[1].lower() not in _EDIT_FIELDS:
        return usage

    field_name = args[1].lower()
    value = " ".join(args[2:]).strip()
    try:
        session = _session(state)
        task = _resolve(session, args[0])
        patch: dict[str, Any]
        if field_name == "title":
            if not value:
                return usage
            patch = {"title": value}
        elif field_name == "desc":
            patch = {"description": value or None}
        elif field_name == "priority":
            patch = {"priority": _parse_priority(value)}
        elif field_name == "due":
            due = parse_due(value)
            patch = {"due_at": due}
            if task.status == TaskStatus.PAST_DUE and (due is None or due > datetime.now().astimezone()):
                patch["status"] = TaskStatus.ACTIVE
        elif field_name == "tags":
            tags = [t.strip().lstrip("#") for t in value.split(",") if t.strip()]
            patch = {"tags": list(dict.fromkeys(tags))}
        else:
            patch = {"visibility": Visibility(field_name)}
        updated = _call(state, session.update_task(task.id, patch))
    except CommandError as e:
        return str(e)
    except StoreError as e:
        return _failed("update task", e)
    if updated is None:
        return "Session closed before the task was saved."
    return f"Updated: {render_task(updated, session.profile.id)}"


def cmd_check(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    """
    /check <id>            -> list checklist items
    /check <id> <n>        -> toggle item n (1-based)
    /check <id> add <text> -> append an item
    """
    if not args:
        return "Usage: /check <id> [<n> | add <text>]"
    try:
        session = _session(state)
        task = _resolve(session, args[0])

        if len(args) == 1:
            if not task.checklist:
                return f"No checklist items on: {task.title}"
            lines = [f"Checklist for {task.title}:"]
            for i, item in enumerate(task.checklist, start=1):
                lines.append(f"  {i}. [{'x' if item.is_completed else ' '}] {item.text}")
            return "\n".join(lines)

        if args[1].lower() == "add":
            text = " ".join(args[2:]).strip()
            if not text:
                return "Usage: /check <id> add <text>"
            checklist = [*task.checklist, ChecklistItem.new(text)]
            _call(state, session.update_task(task.id, {"checklist": checklist}))
            return f"Added checklist item to: {task.title}"

        try:
            n = int(args[1])
        except ValueError:
            return "Usage: /check <id> [<n> | add <text>]"
        if not 1 <= n <= len(task.checklist):
            return f"No checklist item {n} on: {task.title}"
        item = task.checklist[n - 1]
        _call(state, session.toggle_checklist_item(task.id, item.id))
    except CommandError as e:
        return str(e)
    except StoreError as e:
        return _failed("update checklist", e)
    return f"{'Unchecked' if item.is_completed else 'Checked'}: {item.text}"


def cmd_nudge(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    if not args:
        return "Usage: /nudge <id>"
    try:
        session = _session(state)
        task = _resolve(session, args[0])
        sent = _call(state, session.nudge_partner(task.id))
    except CommandError as e:
        return str(e)
    except StoreError as e:
        return _failed("nudge partner", e)
    if not sent:
        return "No partner linked; nothing sent."
    return f"Nudged {session.profile.partner_name or 'partner'} about: {task.title}"


def cmd_rm(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    if not args:
        return "Usage: /rm <id>"
    try:
        session = _session(state)
        task = _resolve(session, args[0])
        _call(state, session.delete_task(task.id))
    except CommandError as e:
        return str(e)
    except StoreError as e:
        return _failed("delete task", e)
    return f"Deleted: {task.title}"


def cmd_tags(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    try:
        session = _session(state)
    except CommandError as e:
        return str(e)
    tags = session.available_tags()
    if not tags:
        return "No tags yet."
    return "Tags: " + " ".join(f"#{t}" for t in tags)


def cmd_link(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    if not args or "@" not in args[0]:
        return "Usage: /link <partner-email>"
    if state.loop is None:
        return "Not signed in (no active session)."

    from .bootstrap import link_partner

    if emit:
        emit("[LINK] Linking partner and reloading tasks...")
    try:
        ok, message = _call(state, link_partner(state, args[0]))
    except StoreError as e:
        return _failed("link partner", e)
    return message if ok else f"Link failed: {message}"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show user, partner and task counts.")
registry.register(
    "tasks",
    cmd_tasks,
    help_text="List tasks: /tasks [mine|shared|history] [created|priority|due] [#tag].",
    aliases=["ls"],
)
registry.register(
    "add",
    cmd_add,
    help_text="Add a task: /add [--shared] [--high|--low] [--due DATE] [--partner] [#tag] title.",
)
registry.register("done", cmd_done, help_text="Toggle completion: /done <id>.")
registry.register("edit", cmd_edit, help_text="Edit a task: /edit <id> title|desc|priority|due|tags|shared|private.")
registry.register("check", cmd_check, help_text="Checklist: /check <id> [<n> | add <text>].")
registry.register("nudge", cmd_nudge, help_text="Ask your partner about a task: /nudge <id>.")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <id>.", aliases=["del"])
registry.register("tags", cmd_tags, help_text="List tags in use.")
registry.register("link", cmd_link, help_text="Link your partner by email: /link <email>.")

"""User-facing reply text for the paths that do not go through the model."""

from datetime import date
from typing import Any

from gtd_agent.agent.tools.types import ToolResult
from gtd_agent.schemas.classification import TaskDraft
from gtd_agent.services.timezones import format_time_of_day, friendly_timezone

HELP_TEXT = (
    "Text me anything to capture it:\n"
    "- \"Call mom tomorrow\" adds an action\n"
    "- \"Waiting on Sarah for the budget\" tracks it\n"
    "- \"Ask Mike about Q3\" adds to Mike's agenda\n"
    "Ask \"what's on today?\", \"done with dentist\", \"undo\", "
    "\"set timezone to Pacific\" or \"pause\"."
)

FALLBACK_UNKNOWN = "Sorry, I didn't catch that. Text a task to capture it, or \"help\" to see what I can do."
FALLBACK_ERROR = "Something went wrong on my end. Please try again in a moment."
TOO_MANY_STEPS = "That needed more steps than I can take at once. Could you split it into smaller requests?"


def _due_label(value: Any) -> str | None:
    if not value:
        return None
    day = value if isinstance(value, date) else date.fromisoformat(str(value))
    return f"due {day.strftime('%a %b')} {day.day}"


def format_task_captured(task: dict[str, Any]) -> str:
    title = task["title"]
    person = task.get("person")
    if task["type"] == "waiting":
        head = f"Waiting on {person}: {title}"
    elif task["type"] == "agenda":
        head = f"Added to {person}'s agenda: {title}"
    elif task["type"] == "project":
        head = f"New project: {title}"
    elif task["type"] == "someday":
        head = f"Someday/maybe: {title}"
    else:
        head = f"Added: {title}"
    details = [d for d in (task.get("context"), (task.get("priority") or "").replace("_", " "), _due_label(task.get("due_date"))) if d]
    return f"{head} ({', '.join(details)})" if details else head


def format_batch(data: dict[str, Any], dropped: int = 0) -> str:
    created = data.get("created", [])
    failed = data.get("failed", [])
    lines = []
    if created:
        lines.append(f"Added {len(created)} item{'s' if len(created) != 1 else ''}:")
        lines.extend(f"- {format_task_captured(t)}" for t in created)
    if failed:
        lines.append(f"Couldn't add {len(failed)}:")
        for f in failed:
            item = f.get("item")
            label = item.get("title") if isinstance(item, dict) and item.get("title") else "an item"
            lines.append(f"- {label} ({f.get('error')})")
    if dropped:
        lines.append(f"I only take {len(created) + len(failed)} items at a time; {dropped} more were skipped. Send them again.")
    return "\n".join(lines) if lines else "I couldn't find any items in that."


def clarification_for(draft: TaskDraft) -> str:
    if "person_name" in draft.missing_fields:
        if draft.type is not None and draft.type.value == "agenda":
            return f'Who do you want to discuss "{draft.title}" with?'
        return f'Who are you waiting on for "{draft.title}"?'
    if "type" in draft.missing_fields:
        return f'Is "{draft.title}" something you need to do, or are you waiting on someone?'
    return "Could you tell me a bit more?"


def format_settings_change(tool: str, data: dict[str, Any]) -> str:
    if tool == "set_timezone":
        return f"Timezone set to {friendly_timezone(data['timezone'])} ({data['timezone']})."
    if tool == "set_digest_time":
        return f"Your daily digest will arrive at {data['label']}."
    if tool == "set_meeting_reminder_hours":
        hours = data["meeting_reminder_hours"]
        return f"I'll remind you {hours} hour{'s' if hours != 1 else ''} before meetings."
    if tool == "set_weekly_review_schedule":
        return f"Weekly review set for {data['label']}."
    if tool == "pause_account":
        return "Paused. No digests or reminders until you text \"resume\"." if data.get("changed") else "You're already paused."
    if tool == "resume_account":
        return "Welcome back! Digests and reminders are on again." if data.get("changed") else "You're already active."
    return "Done."


def uncertain_notice(tools: list[str]) -> str:
    names = ", ".join(dict.fromkeys(t.replace("_", " ") for t in tools))
    return f"Heads up: {names} timed out and may not have completed. Check before trying again."


def format_settings(view: dict[str, Any]) -> str:
    lines = [
        f"Timezone: {friendly_timezone(view['timezone'])}",
        f"Daily digest: {format_time_of_day(view['digest_time'])}",
        f"Meeting reminders: {view['meeting_reminder_hours']}h before",
        f"Weekly review: {view['weekly_review_day'].title()} at {format_time_of_day(view['weekly_review_time'])}",
    ]
    if view.get("status") == "paused":
        lines.append("Account is paused. Text \"resume\" to turn things back on.")
    return "\n".join(lines)


def format_stats(stats: dict[str, Any]) -> str:
    by_type = stats.get("open_by_type") or {}
    breakdown = ", ".join(f"{n} {t}" for t, n in sorted(by_type.items()))
    lines = [f"Open: {stats['open_total']}" + (f" ({breakdown})" if breakdown else "")]
    lines.append(f"Done in the last 7 days: {stats['completed_last_7_days']}")
    lines.append(f"All time: {stats['total_captured']} captured, {stats['total_completed']} completed")
    return "\n".join(lines)


def failure_text(result: ToolResult) -> str:
    if result.uncertain:
        return "I'm not sure that went through."
    if result.error == "timeout":
        return "That took too long. Please try again."
    if result.internal:
        # Argument and crash details stay in the logs and the model transcript.
        return "Something went wrong on my end, so nothing was changed. Please try again."
    return result.error or "That didn't work."

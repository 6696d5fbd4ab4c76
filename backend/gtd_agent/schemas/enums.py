from enum import Enum


class TaskType(str, Enum):
    ACTION = "action"
    PROJECT = "project"
    WAITING = "waiting"
    SOMEDAY = "someday"
    AGENDA = "agenda"


class TaskContext(str, Enum):
    COMPUTER = "computer"
    PHONE = "phone"
    HOME = "home"
    OUTSIDE = "outside"


class TaskPriority(str, Enum):
    TODAY = "today"
    THIS_WEEK = "this_week"
    SOON = "soon"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    DISCUSSED = "discussed"
    CANCELLED = "cancelled"


class DayOfWeek(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    AS_NEEDED = "as_needed"


class LookupKind(str, Enum):
    PEOPLE = "people"
    TASKS = "tasks"
    PERSON_AGENDA = "person_agenda"
    SETTINGS = "settings"


class IntentType(str, Enum):
    # Queries
    QUERY_TODAY = "query_today"
    QUERY_TOMORROW = "query_tomorrow"
    QUERY_ACTIONS = "query_actions"
    QUERY_PROJECTS = "query_projects"
    QUERY_WAITING = "query_waiting"
    QUERY_SOMEDAY = "query_someday"
    QUERY_CONTEXT = "query_context"
    QUERY_PEOPLE = "query_people"
    QUERY_PERSON_AGENDA = "query_person_agenda"
    # Info
    SHOW_HELP = "show_help"
    SHOW_SETTINGS = "show_settings"
    SHOW_STATS = "show_stats"
    # Completion
    COMPLETE_TASK = "complete_task"
    COMPLETE_RECENT = "complete_recent"
    COMPLETE_PERSON_AGENDA = "complete_person_agenda"
    COMPLETE_ALL_TODAY = "complete_all_today"
    COMPLETE_ALL_CONTEXT = "complete_all_context"
    # People
    ADD_PERSON = "add_person"
    REMOVE_PERSON = "remove_person"
    SET_ALIAS = "set_alias"
    SET_SCHEDULE = "set_schedule"
    CLEAR_PERSON_AGENDA = "clear_person_agenda"
    # Settings
    SET_DIGEST_TIME = "set_digest_time"
    SET_TIMEZONE = "set_timezone"
    SET_REMINDER_HOURS = "set_reminder_hours"
    SET_REVIEW_DAY = "set_review_day"
    SET_REVIEW_TIME = "set_review_time"
    PAUSE_ACCOUNT = "pause_account"
    RESUME_ACCOUNT = "resume_account"
    # Editing
    RESCHEDULE_TASK = "reschedule_task"
    SET_TASK_PRIORITY = "set_task_priority"
    SET_TASK_CONTEXT = "set_task_context"
    ADD_TASK_NOTE = "add_task_note"
    RENAME_TASK = "rename_task"
    DELETE_TASK = "delete_task"
    ASSIGN_TASK_PERSON = "assign_task_person"
    CHANGE_TASK_TYPE = "change_task_type"
    # Corrections
    UNDO_LAST = "undo_last"
    CORRECT_PERSON = "correct_person"


# Intents answerable without reading task state.
STATIC_INTENTS: frozenset[IntentType] = frozenset(
    {
        IntentType.SHOW_HELP,
        IntentType.SET_TIMEZONE,
        IntentType.SET_DIGEST_TIME,
        IntentType.SET_REMINDER_HOURS,
        IntentType.SET_REVIEW_DAY,
        IntentType.SET_REVIEW_TIME,
        IntentType.PAUSE_ACCOUNT,
        IntentType.RESUME_ACCOUNT,
        IntentType.UNDO_LAST,
    }
)

PERSON_REQUIRED_TYPES: frozenset[TaskType] = frozenset({TaskType.WAITING, TaskType.AGENDA})

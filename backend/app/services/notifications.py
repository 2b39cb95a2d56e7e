"""
Push notifications.

Message composition is pure and lives in the compose_* functions. Delivery
goes through a pluggable transport; the default transport only logs that
push delivery is not configured. Digests are triggered by an external
scheduler through POST /api/notifications/digest/{kind}.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from app.db import supabase_admin

logger = logging.getLogger(__name__)

MAX_LISTED_TASKS = 3


class DigestKind(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    OVERDUE = "overdue"


@dataclass
class Notification:
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)


class NotificationTransport(Protocol):
    def send(self, token: str, title: str, body: str, data: Dict[str, str]) -> bool:
        ...


class LoggingTransport:
    """Placeholder transport used until a push provider is configured."""

    def send(self, token: str, title: str, body: str, data: Dict[str, str]) -> bool:
        logger.info(f"Push delivery not configured; dropping notification '{title}'")
        return False


_transport: NotificationTransport = LoggingTransport()


def set_transport(transport: NotificationTransport) -> NotificationTransport:
    """Install a delivery transport. Returns the previous one."""
    global _transport
    previous = _transport
    _transport = transport
    return previous


def get_transport() -> NotificationTransport:
    return _transport


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

def _plural(count: int) -> str:
    return "s" if count > 1 else ""


def format_task_list(tasks: Sequence[Mapping]) -> str:
    """Bullet list of at most three titles, then ' and N more'."""
    lines = "\n".join(f"• {task.get('title', '')}" for task in tasks[:MAX_LISTED_TASKS])
    remaining = len(tasks) - MAX_LISTED_TASKS
    if remaining > 0:
        lines += f" and {remaining} more"
    return lines


def _data(kind: str, count: int) -> Dict[str, str]:
    # Push data payloads only carry strings
    return {"type": kind, "task_count": str(count)}


def compose_morning_summary(today_tasks: Sequence[Mapping]) -> Notification:
    count = len(today_tasks)
    if count == 0:
        return Notification(
            title="Good Morning! 🌅",
            body="No tasks due today. Enjoy your day!",
            data=_data("morning_summary", 0),
        )
    return Notification(
        title="Good Morning! Here's your day ahead 🌅",
        body=f"{count} task{_plural(count)} due today:\n{format_task_list(today_tasks)}",
        data=_data("morning_summary", count),
    )


def compose_afternoon_reminder(today_tasks: Sequence[Mapping]) -> Optional[Notification]:
    count = len(today_tasks)
    if count == 0:
        return None
    return Notification(
        title="Afternoon Check-in ☀️",
        body=f"{count} task{_plural(count)} still pending:\n{format_task_list(today_tasks)}",
        data=_data("afternoon_reminder", count),
    )


def compose_evening_summary(
    today_tasks: Sequence[Mapping],
    tomorrow_tasks: Sequence[Mapping],
) -> Notification:
    pending = list(today_tasks) + list(tomorrow_tasks)
    if not pending:
        return Notification(
            title="Evening Summary 🌙",
            body="All caught up! No pending tasks for today or tomorrow.",
            data=_data("evening_summary", 0),
        )

    if today_tasks and tomorrow_tasks:
        summary = f"{len(today_tasks)} pending today, {len(tomorrow_tasks)} due tomorrow"
    elif today_tasks:
        summary = f"{len(today_tasks)} pending today"
    else:
        summary = f"{len(tomorrow_tasks)} due tomorrow"

    return Notification(
        title="Evening Summary 🌙",
        body=f"{summary}:\n{format_task_list(pending)}",
        data=_data("evening_summary", len(pending)),
    )


def compose_overdue_alert(overdue_tasks: Sequence[Mapping]) -> Optional[Notification]:
    count = len(overdue_tasks)
    if count == 0:
        return None
    return Notification(
        title="Overdue Tasks Alert ⚠️",
        body=f"{count} overdue task{_plural(count)}:\n{format_task_list(overdue_tasks)}",
        data=_data("overdue_alert", count),
    )


def compose_task_created(title: str, due_date: Optional[date], today: date) -> Optional[Notification]:
    """Notice for a new task due today or tomorrow; None otherwise."""
    if due_date == today:
        due_text = "today"
    elif due_date == today + timedelta(days=1):
        due_text = "tomorrow"
    else:
        return None
    return Notification(
        title="New Task Due Soon",
        body=f'"{title}" is due {due_text}',
        data={"type": "task_due_soon"},
    )


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

def send_notification_to_user(
    user_id: str,
    title: str,
    body: str,
    data: Optional[Dict[str, str]] = None,
) -> bool:
    """
    Look up the user's push token and hand the message to the transport.

    Returns True when the transport accepted the message. Never raises:
    missing tokens and delivery failures are logged.
    """
    try:
        result = (
            supabase_admin.table("users")
            .select("id, fcm_token")
            .eq("id", user_id)
            .execute()
        )
        token = result.data[0].get("fcm_token") if result.data else None
        if not token:
            logger.info(f"No push token for user {user_id}")
            return False

        delivered = bool(_transport.send(token, title, body, data or {}))
        if delivered:
            logger.info(f"Notification sent to user {user_id}: {title}")
        return delivered
    except Exception as e:
        logger.error(f"Error sending notification to user {user_id}: {e}")
        return False


def notify_task_created(user_id: str, title: str, due_date: Optional[date], today: Optional[date] = None) -> bool:
    if today is None:
        today = datetime.now(timezone.utc).date()
    notification = compose_task_created(title, due_date, today)
    if notification is None:
        return False
    return send_notification_to_user(user_id, notification.title, notification.body, notification.data)


def _open_tasks_due_on(user_id: str, day: date) -> List[dict]:
    result = (
        supabase_admin.table("tasks")
        .select("id, title, due_date, status")
        .eq("user_id", user_id)
        .eq("status", "open")
        .eq("due_date", day.isoformat())
        .execute()
    )
    return result.data or []


def _overdue_tasks(user_id: str, today: date) -> List[dict]:
    result = (
        supabase_admin.table("tasks")
        .select("id, title, due_date, status")
        .eq("user_id", user_id)
        .eq("status", "open")
        .lt("due_date", today.isoformat())
        .execute()
    )
    return result.data or []


def compose_digest(kind: DigestKind, user_id: str, today: date) -> Optional[Notification]:
    """Fetch the user's tasks for a digest kind and compose the message."""
    if kind == DigestKind.MORNING:
        return compose_morning_summary(_open_tasks_due_on(user_id, today))
    if kind == DigestKind.AFTERNOON:
        return compose_afternoon_reminder(_open_tasks_due_on(user_id, today))
    if kind == DigestKind.EVENING:
        return compose_evening_summary(
            _open_tasks_due_on(user_id, today),
            _open_tasks_due_on(user_id, today + timedelta(days=1)),
        )
    return compose_overdue_alert(_overdue_tasks(user_id, today))


def run_digest(kind: DigestKind, today: Optional[date] = None) -> dict:
    """
    Compose and send one digest to every user.

    A failure for one user is logged and does not stop the run. Failing to
    list users propagates to the caller. Raises ValueError for an unknown kind.
    """
    kind = DigestKind(kind)
    if today is None:
        today = datetime.now(timezone.utc).date()

    logger.info(f"Running {kind.value} digest for {today.isoformat()}")
    users = supabase_admin.table("users").select("id").execute().data or []

    sent = 0
    for user in users:
        user_id = user["id"]
        try:
            notification = compose_digest(kind, user_id, today)
        except Exception as e:
            logger.error(f"Error composing {kind.value} digest for user {user_id}: {e}")
            continue
        if notification is None:
            continue
        if send_notification_to_user(user_id, notification.title, notification.body, notification.data):
            sent += 1

    logger.info(f"{kind.value.capitalize()} digest completed: {sent}/{len(users)} sent")
    return {"kind": kind.value, "users": len(users), "sent": sent}

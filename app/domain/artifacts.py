from __future__ import annotations

from datetime import datetime

# Every object stored for a submission lives under "{submission_id}/".
# Cascading delete relies on this: removing the prefix removes all content.


def submission_prefix(submission_id: str) -> str:
    if not submission_id or "/" in submission_id:
        raise ValueError(f"invalid submission id for object prefix: {submission_id!r}")
    return f"{submission_id}/"


def archive_object_key(*, submission_id: str, repo_name: str, uploaded_at: datetime) -> str:
    return f"{submission_prefix(submission_id)}{repo_name}-{_millis(uploaded_at)}"


def screenshot_object_key(*, submission_id: str, captured_at: datetime) -> str:
    return f"{submission_prefix(submission_id)}screenshots/screenshot-{_millis(captured_at)}.png"


def _millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)

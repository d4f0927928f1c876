"""Open tasks from the Todoist REST API.

Tasks are returned in source order; the arbiter never re-ranks within a
priority band. Any failure yields an empty list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import requests
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Task:
    title: str
    priority: str = "low"
    due: Optional[str] = None


class _Due(BaseModel):
    string: Optional[str] = None
    date: Optional[str] = None


class _TodoistTask(BaseModel):
    content: str
    priority: int = 1
    due: Optional[_Due] = None


def priority_name(level: int) -> str:
    """Todoist priority 4 is P1; 4 and 3 map to high, 2 to medium."""
    if level >= 3:
        return "high"
    if level == 2:
        return "medium"
    return "low"


def read_tasks(
    api_key: Optional[str],
    api_url: str = "https://api.todoist.com/rest/v2/tasks",
    limit: int = 5,
    timeout: float = 10.0,
) -> List[Task]:
    if not api_key:
        logger.debug("Todoist API key not configured")
        return []

    try:
        resp = requests.get(
            api_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        logger.warning("Todoist request failed: %s", exc)
        return []

    if resp.status_code != 200:
        logger.warning("Todoist API error: %s", resp.status_code)
        return []

    try:
        payload = resp.json()
    except ValueError as exc:
        logger.warning("Malformed Todoist payload: %s", exc)
        return []
    if isinstance(payload, dict):
        payload = payload.get("results", [])
    if not isinstance(payload, list):
        return []

    tasks: List[Task] = []
    for item in payload:
        try:
            parsed = _TodoistTask.model_validate(item)
        except ValidationError:
            continue
        tasks.append(Task(
            title=parsed.content,
            priority=priority_name(parsed.priority),
            due=(parsed.due.string or parsed.due.date) if parsed.due else None,
        ))
        if len(tasks) >= limit:
            break
    logger.info("Todoist: %d tasks", len(tasks))
    return tasks

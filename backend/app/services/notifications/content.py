"""
Notification text: AI-generated when a backend is available, template fallback otherwise.

ContentGenerator.generate() never raises. Every result (generated or fallback) is sanitized
and truncated to TITLE_MAX_LENGTH / MESSAGE_MAX_LENGTH.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from app.core.constants import MESSAGE_MAX_LENGTH, TITLE_MAX_LENGTH
from app.core.errors import ContentGenerationError
from app.services.notifications.time_window import to_local
from app.services.notifications.types import GeneratedContent, NotificationContext, NotificationType

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 2.0

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")


class ContentBackend(Protocol):
    """External text generator. complete() returns the raw model text for a prompt."""

    async def complete(self, prompt: str) -> str:
        ...


def sanitize_text(text: str | None, max_length: int) -> str:
    """Strip control characters, collapse whitespace, truncate with '...' past max_length."""
    if not text:
        return ""
    cleaned = _WHITESPACE.sub(" ", _CONTROL_CHARS.sub(" ", str(text))).strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3].rstrip() + "..."
    return cleaned


# ---------------------------------------------------------------------------
# Fallback templates: one per NotificationType (checked below), plus a default arm
# ---------------------------------------------------------------------------

_FALLBACK_TEMPLATES: dict[NotificationType, dict[str, str]] = {
    NotificationType.ALERT: {
        "title": "⚠️ {name}, heads up!",
        "message": 'Your task "{task}" needs your attention now. Don\'t let the deadline slip!',
        "tone": "urgent",
        "emoji": "⚠️",
    },
    NotificationType.REMINDER: {
        "title": "📝 Reminder for {name}",
        "message": 'How about taking a look at "{task}"? You\'ve got this!',
        "tone": "friendly",
        "emoji": "📝",
    },
    NotificationType.MOTIVATION: {
        "title": "🚀 Keep going, {name}!",
        "message": "You're at level {level} with a {streak}-day streak. Keep it up!",
        "tone": "motivational",
        "emoji": "🚀",
    },
    NotificationType.ACHIEVEMENT: {
        "title": "🏆 Well done, {name}!",
        "message": 'Task "{task}" completed! +{points} points for you.',
        "tone": "celebratory",
        "emoji": "🏆",
    },
    NotificationType.PROGRESS: {
        "title": "📊 Progress check, {name}",
        "message": "Level {level}, {streak}-day streak. Every finished task moves you forward.",
        "tone": "encouraging",
        "emoji": "📊",
    },
    NotificationType.INSIGHT: {
        "title": "💡 Your weekly insight, {name}",
        "message": "You're at level {level} with a {streak}-day streak. Plan your most important task for your best hours.",
        "tone": "informative",
        "emoji": "💡",
    },
}
_DEFAULT_TEMPLATE = _FALLBACK_TEMPLATES[NotificationType.REMINDER]

_missing = set(NotificationType) - set(_FALLBACK_TEMPLATES)
if _missing:
    raise RuntimeError(f"Fallback templates missing for {sorted(t.value for t in _missing)}")


def fallback_content(context: NotificationContext) -> GeneratedContent:
    """Deterministic per-type template. Always succeeds."""
    template = _FALLBACK_TEMPLATES.get(context.type, _DEFAULT_TEMPLATE)
    user = context.user
    task = context.task
    values = {
        "name": (user.name if user else None) or "there",
        "task": (task.name if task else None) or "pending",
        "level": user.level if user else 1,
        "streak": user.streak if user else 0,
        "points": (task.points if task else 0) or 0,
    }
    return GeneratedContent(
        title=sanitize_text(template["title"].format(**values), TITLE_MAX_LENGTH),
        message=sanitize_text(template["message"].format(**values), MESSAGE_MAX_LENGTH),
        tone=template["tone"],
        emoji=template["emoji"],
        generated_with_ai=False,
    )


def build_prompt(context: NotificationContext) -> str:
    user = context.user
    task = context.task
    settings = context.settings
    local_now = to_local(context.now, settings.timezone)
    if task is not None:
        task_lines = [
            f"- Name: {task.name}",
            f"- Description: {task.description or 'N/A'}",
            f"- Points: {task.points}",
            f"- Deadline: {task.due_at.isoformat() if task.due_at else 'N/A'}",
            f"- Status: {'Completed' if task.completed else 'Pending'}",
        ]
        if task.categories:
            task_lines.append(f"- Categories: {', '.join(task.categories)}")
        if task.tags:
            task_lines.append(f"- Tags: {', '.join(task.tags)}")
    else:
        task_lines = ["- No linked task"]
    lines = [
        f"Tone: {settings.personality}",
        f"Current local time: {local_now.strftime('%H:%M')} ({settings.timezone})",
        "",
        "USER:",
        f"- Name: {user.name}",
        f"- Level: {user.level}",
        f"- Current streak: {user.streak} days",
        f"- Active hours: {settings.window_start} to {settings.window_end}",
        f"- Segment: {user.engagement.user_segment}",
        "",
        "TASK:",
        *task_lines,
        "",
        f"NOTIFICATION TYPE: {context.type.value}",
        f"OBJECTIVE: {context.objective}",
        "",
        "Respond with JSON only:",
        '{"title": "...", "message": "...", "tone": "...", "emoji": "..."}',
    ]
    return "\n".join(lines)


def parse_response(raw: str) -> GeneratedContent:
    """First JSON object in raw text -> content. Raises ContentGenerationError if unusable."""
    if not raw:
        raise ContentGenerationError("Empty response from content backend")
    decoder = json.JSONDecoder()
    parsed: Any = None
    for match in re.finditer(r"\{", raw):
        try:
            parsed, _ = decoder.raw_decode(raw, match.start())
            break
        except json.JSONDecodeError:
            continue
    if not isinstance(parsed, dict):
        raise ContentGenerationError("Response does not contain a JSON object")
    title = parsed.get("title")
    message = parsed.get("message")
    if not title or not message:
        raise ContentGenerationError("Response missing title or message")
    return GeneratedContent(
        title=sanitize_text(title, TITLE_MAX_LENGTH),
        message=sanitize_text(message, MESSAGE_MAX_LENGTH),
        tone=str(parsed.get("tone") or "neutral"),
        emoji=str(parsed.get("emoji") or "📝"),
        generated_with_ai=True,
    )


class ContentGenerator:
    """
    Primary path: prompt -> backend (bounded retries, exponential backoff, per-call timeout)
    -> parse. Any failure on that path returns fallback_content(context).
    """

    def __init__(
        self,
        backend: ContentBackend | None = None,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.backend = backend
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    async def generate(self, context: NotificationContext) -> GeneratedContent:
        if self.backend is None:
            return fallback_content(context)
        start = time.monotonic()
        try:
            raw = await self._complete_with_retries(build_prompt(context))
            content = parse_response(raw)
        except Exception as e:
            logger.warning(
                "Content generation failed for user %s (%s); using fallback: %s",
                context.user.id,
                context.type.value,
                e,
            )
            return fallback_content(context)
        logger.info(
            "Generated %s content for user %s in %.3fs",
            context.type.value,
            context.user.id,
            time.monotonic() - start,
        )
        return content

    async def _complete_with_retries(self, prompt: str) -> str:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await asyncio.wait_for(self.backend.complete(prompt), timeout=self.timeout_seconds)
            except Exception as e:
                last_error = e
                logger.warning("Content backend attempt %s/%s failed: %s", attempt, self.max_attempts, e)
                if attempt < self.max_attempts:
                    await self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))
        raise ContentGenerationError(f"Content backend failed after {self.max_attempts} attempts") from last_error

"""
Prompt context assembly, output cleanup and deterministic fallback text.

Everything here is pure: no I/O, no provider calls.
"""
import re
from collections import Counter
from datetime import datetime
from typing import Optional

from ..store.models import Activity, ActivityType, truncate_text, utcnow

DESCRIPTION_EXCERPT_LENGTH = 50
FALLBACK_TITLE_LENGTH = 40
MIN_ECHO_PHRASE_LENGTH = 10

# Framing an LLM sometimes puts in front of the post
FRAMING_PREFIXES = (
    "Here's a tweet",
    "Here's an announcement",
    "Here is a tweet",
    "Here is an announcement",
    "Tweet:",
    "Announcement:",
    "Here's what you requested:",
    "As requested:",
    "Here's the announcement",
    "Here's the content",
    "Based on your instructions",
    "As per your request",
)

_SURROUNDING_QUOTES = re.compile(r"^[\"'](.*)[\"']$", re.DOTALL)
_LEADING_TRAILING_COLONS = re.compile(r"^[: ]+|[: ]+$")
_LEADING_ECHO_DEBRIS = re.compile(r"^[:\"' ]+")
_PHRASE_SPLIT = re.compile(r"[,.!?;:]")
_VERSION = re.compile(r"v?(\d+\.\d+\.\d+)")


def group_by_repository(activities: list[Activity]) -> dict[str, list[Activity]]:
    """Group activities by repository, keeping first-seen order of both groups and members."""
    groups: dict[str, list[Activity]] = {}
    for activity in activities:
        groups.setdefault(activity.repository, []).append(activity)
    return groups


def largest_group(activities: list[Activity]) -> tuple[str, list[Activity]]:
    """The repository with the most activities. Ties go to the first one encountered."""
    groups = group_by_repository(activities)
    repository = max(groups, key=lambda repo: len(groups[repo]))
    return repository, groups[repository]


def most_recent_group(activities: list[Activity]) -> tuple[str, list[Activity]]:
    """The repository holding the most recent activity. Ties go to the first one encountered."""
    groups = group_by_repository(activities)
    repository = max(groups, key=lambda repo: max(a.created_at for a in groups[repo]))
    return repository, groups[repository]


def count_by_type(activities: list[Activity]) -> Counter:
    return Counter(a.type for a in activities)


def project_name(repository: str) -> str:
    if not repository:
        return "my project"
    return repository.split("/")[-1] or repository


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def time_ago(moment: datetime, now: Optional[datetime] = None) -> str:
    """Humanized distance, e.g. ``3 hours ago``."""
    now = now or utcnow()
    seconds = max(0, int((now - moment).total_seconds()))
    if seconds < 60:
        return "less than a minute ago"
    minutes = seconds // 60
    if minutes < 60:
        return f"{_plural(minutes, 'minute')} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{_plural(hours, 'hour')} ago"
    days = hours // 24
    if days < 30:
        return f"{_plural(days, 'day')} ago"
    months = days // 30
    if months < 12:
        return f"{_plural(months, 'month')} ago"
    return f"{_plural(days // 365, 'year')} ago"


def _activity_line(activity: Activity) -> str:
    line = f"- [{activity.type.value.upper()}] {activity.title or 'Untitled activity'}"
    description = (activity.description or "").strip()
    if description:
        first_line = description.split("\n")[0].strip()
        if len(first_line) > DESCRIPTION_EXCERPT_LENGTH:
            line += f": {first_line[:DESCRIPTION_EXCERPT_LENGTH]}..."
        elif first_line:
            line += f": {first_line}"
    return line


def build_context(
    repository: str,
    activities: list[Activity],
    now: Optional[datetime] = None,
) -> str:
    """
    Summarize one repository's activity for a prompt.

    Includes repository and project name, per-type counts, a recency phrase
    and one line per activity.
    """
    counts = count_by_type(activities)
    most_recent = max(activities, key=lambda a: a.created_at)

    summary = (
        f"{counts[ActivityType.COMMIT]} commits, "
        f"{counts[ActivityType.PR]} pull requests, "
        f"{counts[ActivityType.ISSUE]} issues"
    )
    if counts[ActivityType.RELEASE]:
        summary += f", {counts[ActivityType.RELEASE]} releases"

    lines = [
        f"Repository: {repository}",
        f"Project: {project_name(repository)}",
        f"Activity Summary: {summary}",
        f"Time Frame: Most recent activity {time_ago(most_recent.created_at, now)}",
        "",
        "Recent Activities:",
        *(_activity_line(a) for a in activities),
    ]
    return "\n".join(lines)


def clean_instruction(instructions: str) -> str:
    """Strip quotes wrapped around a user instruction."""
    return instructions.strip().strip("\"'").strip()


def clean_generated_text(text: str, prompt: str) -> tuple[str, list[str]]:
    """
    Remove framing an LLM adds around the post.

    Steps, in order: surrounding quotes, the first matching framing prefix
    (case-insensitive) with leftover colons and spaces, and an echo of any
    prompt clause longer than 10 characters at the start of the text.

    Returns:
        Cleaned text and a list of applied actions for the debug trace
    """
    actions: list[str] = []
    cleaned = _SURROUNDING_QUOTES.sub(r"\1", text.strip())
    if cleaned != text.strip():
        actions.append("removed surrounding quotes")

    lowered = cleaned.lower()
    for prefix in FRAMING_PREFIXES:
        if lowered.startswith(prefix.lower()):
            cleaned = cleaned[len(prefix):].strip()
            cleaned = _LEADING_TRAILING_COLONS.sub("", cleaned)
            actions.append(f'removed prefix "{prefix}"')
            break

    phrases = [
        phrase.strip().lower()
        for phrase in _PHRASE_SPLIT.split(prompt)
        if len(phrase.strip()) > MIN_ECHO_PHRASE_LENGTH
    ]
    lowered = cleaned.lower()
    for phrase in phrases:
        if lowered.startswith(phrase):
            cleaned = cleaned[len(phrase):].strip()
            cleaned = _LEADING_ECHO_DEBRIS.sub("", cleaned)
            actions.append(f'removed echoed phrase "{phrase}"')
            break

    return cleaned.strip(), actions


def _hashtag(repository: str) -> str:
    tag = re.sub(r"[^a-z0-9]", "", project_name(repository).lower()) if repository else ""
    return tag or "coding"


def fallback_text(
    repository: str,
    activities: list[Activity],
    max_length: int = 280,
) -> str:
    """
    Deterministic post used when no provider produces text.

    Never empty and never longer than ``max_length``.
    """
    counts = count_by_type(activities)
    recent_titles = [
        a.title[:FALLBACK_TITLE_LENGTH]
        for a in sorted(activities, key=lambda a: a.created_at, reverse=True)[:2]
        if a.title
    ]

    text = f"Just made progress on {project_name(repository)}! "

    release = next((a for a in activities if a.type == ActivityType.RELEASE), None)
    if release is not None:
        match = _VERSION.search(release.title or "") or _VERSION.search(release.external_id or "")
        text += f"🚀 Released v{match.group(1)}. " if match else "🚀 Released new version. "
    else:
        parts = []
        if counts[ActivityType.COMMIT]:
            parts.append(_plural(counts[ActivityType.COMMIT], "commit"))
        if counts[ActivityType.PR]:
            parts.append(_plural(counts[ActivityType.PR], "PR"))
        if counts[ActivityType.ISSUE]:
            parts.append(_plural(counts[ActivityType.ISSUE], "issue"))
        if parts:
            text += f"Added {', '.join(parts)}. "

    if recent_titles:
        text += f"Latest: {recent_titles[0]}"
        if len(recent_titles) > 1:
            text += " and more"
        text += ". "

    text += f"#{_hashtag(repository)} #devwork"
    return truncate_text(text, max_length)


def instruction_prefix(instructions: Optional[str], repository: str) -> str:
    """Lead-in for instruction-driven fallback text."""
    if not instructions or not instructions.strip():
        return ""
    cleaned = clean_instruction(instructions)
    if not cleaned:
        return ""
    lowered = cleaned.lower()
    if "tweet about" in lowered:
        return f"Tweet about {project_name(repository)}: "
    if "post about" in lowered:
        return f"Post about {project_name(repository)}: "
    return f"{cleaned[:1].upper()}{cleaned[1:]}: "


def instructions_fallback_text(
    instructions: Optional[str],
    repository: str,
    activities: list[Activity],
    max_length: int = 280,
) -> str:
    prefix = instruction_prefix(instructions, repository)
    return truncate_text(prefix + fallback_text(repository, activities, max_length), max_length)

from __future__ import annotations

from collections.abc import Iterable

from . import db


def agent_tags(suffixes: Iterable[str], *roles: str) -> list[str]:
    """Cross ``roles`` with the configured suffixes as ``role.suffix``.

    With no suffixes the roles are returned unchanged.
    """
    suffixes = list(suffixes)
    if not suffixes:
        return list(roles)
    return [f"{role}.{suffix}" for suffix in suffixes for role in roles]


def parse_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    return union(t.strip() for t in raw.split(","))


def union(first: Iterable[str], *rest: Iterable[str]) -> list[str]:
    """Ordered set union: first occurrence keeps its position, blanks dropped."""
    out: list[str] = []
    for seq in (first, *rest):
        for tag in seq:
            if tag and tag not in out:
                out.append(tag)
    return out


def parse_task_tag_rules(raw: str) -> dict[str, list[str]]:
    """Parse ``pattern:tag1,tag2;pattern2:tag3`` into an ordered rule table.

    Patterns are lower-cased; a pattern given twice merges its tags.
    """
    rules: dict[str, list[str]] = {}
    for item in raw.split(";"):
        item = item.strip()
        if not item:
            continue
        pattern, sep, tags = item.partition(":")
        pattern = pattern.strip().lower()
        if not sep or not pattern:
            raise ValueError(f"Invalid task tag rule {item!r}: expected pattern:tag[,tag...]")
        rules[pattern] = union(rules.get(pattern, []), parse_tags(tags))
    return rules


def build_task_tags(task_name: str, starting: Iterable[str], rules: dict[str, list[str]]) -> list[str]:
    result = union(starting)
    lowered = task_name.lower()
    for pattern, tags in rules.items():
        if pattern not in lowered:
            continue
        for tag in tags:
            if tag not in result:
                db.log_event("DEBUG", f"Task {lowered} matches pattern {pattern!r}, adding tag {tag!r}")
                result.append(tag)
    return result

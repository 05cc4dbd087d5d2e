"""Render memories as a tagged block for a generation prompt."""

from __future__ import annotations

from typing import Iterable

from lorekeeper.models import Memory


def format_memories_for_context(entity_name: str, entity_id: int,
                                memories: Iterable[Memory]) -> str:
    """One memory per line inside ``<memories entity="NAME" id="ID">``.

    Returns an empty string when there is nothing to show.
    """
    lines = [m.content for m in memories]
    if not lines:
        return ""
    body = "\n".join(lines)
    return f'<memories entity="{entity_name}" id="{entity_id}">\n{body}\n</memories>'

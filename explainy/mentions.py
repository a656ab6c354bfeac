from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

from explainy.errors import NoMatchingDocument
from explainy.store import DocumentRecord


LOGGER = logging.getLogger("explainy.answer")

MENTION_RE = re.compile(r"@(\S+)")


@dataclass(frozen=True)
class MentionQuery:
    raw: str
    target: str | None
    cleaned: str


def parse_mention(question: str) -> MentionQuery:
    question = question or ""
    match = MENTION_RE.search(question)
    if not match:
        return MentionQuery(raw=question, target=None, cleaned=question)
    cleaned = (question[: match.start()] + question[match.end() :]).strip()
    return MentionQuery(raw=question, target=match.group(1), cleaned=cleaned)


def resolve_mention(target: str, records: Sequence[DocumentRecord]) -> list[DocumentRecord]:
    needle = target.lower()
    return [r for r in records if needle in r.name.lower()]


def select_target(query: MentionQuery, records: Sequence[DocumentRecord]) -> DocumentRecord | None:
    """Pick the document an @mention points at.

    Several matches resolve to the first one in store order; there is no
    ranking between candidate names.
    """
    if query.target is None:
        return None
    matches = resolve_mention(query.target, records)
    if not matches:
        raise NoMatchingDocument(query.target)
    if len(matches) > 1:
        LOGGER.info(
            "mention_ambiguous | target=%s | candidates=%s | chosen=%s",
            query.target,
            ", ".join(f'"{r.name}"' for r in matches),
            matches[0].name,
        )
    return matches[0]

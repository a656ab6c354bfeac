"""Keyword/paragraph ranking used when the generative call is unavailable.

The score is a heuristic: it rewards paragraphs that contain many distinct
question keywords, that are short for the number of hits, and that look like
headings. It says nothing about whether a passage actually answers the
question.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from explainy.store import DocumentRecord


MIN_KEYWORD_LEN = 4
MIN_PARAGRAPH_LEN = 31
HEADING_BONUS = 2.0
DEFAULT_TOP_K = 5

NO_MATCH_MESSAGE = (
    "I couldn't find information in the documents that directly matches your query. "
    "Please try rephrasing your question or ask about a different topic covered in the documents."
)

SEARCH_ERROR_MESSAGE = (
    "I encountered an error searching through the documents. "
    "Please try a simpler question or check that your documents contain relevant information."
)


@dataclass(frozen=True)
class RankedPassage:
    text: str
    source: str
    score: float


def extract_keywords(question: str) -> list[str]:
    words = [w for w in (question or "").lower().split() if len(w) >= MIN_KEYWORD_LEN]
    return list(dict.fromkeys(words))


def split_paragraphs(text: str) -> list[str]:
    parts = (p.strip() for p in re.split(r"\n\n+", text or ""))
    return [p for p in parts if len(p) >= MIN_PARAGRAPH_LEN]


def _looks_like_heading(paragraph: str) -> bool:
    if not 20 < len(paragraph) < 200:
        return False
    return ":" in paragraph or re.search(r"[A-Z][A-Z]", paragraph) is not None


def score_paragraph(paragraph: str, keywords: Sequence[str]) -> float:
    low = paragraph.lower()
    match_count = sum(1 for k in keywords if k in low)
    if match_count == 0:
        return 0.0
    score = float(match_count)
    if match_count > 1:
        score += 2 ** (match_count - 1)
        score += 500 / (len(paragraph) + 1)
    if _looks_like_heading(paragraph):
        score += HEADING_BONUS
    return score


def rank_passages(
    records: Sequence[DocumentRecord],
    question: str,
    top_k: int = DEFAULT_TOP_K,
) -> list[RankedPassage]:
    keywords = extract_keywords(question)
    if not keywords:
        return []
    scored: list[RankedPassage] = []
    for record in records:
        for paragraph in split_paragraphs(record.text):
            score = score_paragraph(paragraph, keywords)
            if score > 0:
                scored.append(RankedPassage(text=paragraph, source=record.name, score=score))
    # sorted() is stable, so equal scores keep encounter order.
    scored = sorted(scored, key=lambda p: p.score, reverse=True)
    return scored[: max(0, top_k)]


def compose_answer(question: str, passages: Sequence[RankedPassage]) -> str:
    if not passages:
        return NO_MATCH_MESSAGE
    lines = [f'Based on your question about "{question}", I found these relevant sections:\n']
    for idx, passage in enumerate(passages, start=1):
        lines.append(f'{idx}. From "{passage.source}": {passage.text.strip()}\n')
    sources = list(dict.fromkeys(p.source for p in passages))
    lines.append(f"Information was found in the following document(s): {', '.join(sources)}.\n")
    lines.append("If you need more specific details, please ask a more focused question.")
    return "\n".join(lines)

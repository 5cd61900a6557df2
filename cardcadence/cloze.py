"""
Cloze deletion parsing, rendering and expansion.

A deletion is written ``{{cK::TEXT}}`` or ``{{cK::TEXT::HINT}}``. ``K`` is a
numbered slot: every deletion sharing a slot is hidden and revealed together,
and a template with highest slot N expands into N independent items.

TEXT may not contain ``:`` or ``}``. Anything that does not match the grammar
is left in place as literal text.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Literal, Optional

from .config import SchedulerConfig
from .constants import MAX_CLOZE_SLOT
from .exceptions import CardValidationError
from .models import CardType, Item

logger = logging.getLogger(__name__)

CLOZE_PATTERN = re.compile(r"\{\{c(\d+)::([^:}]+)(?:::([^}]+))?\}\}")
BLANK_PLACEHOLDER = "..."


@dataclass(frozen=True)
class ClozeSegment:
    kind: Literal["text", "cloze"]
    content: str
    hint: Optional[str] = None
    # Slot number for cloze segments, 0 for plain text.
    index: int = 0


@dataclass(frozen=True)
class ClozeParseResult:
    parts: List[ClozeSegment] = field(default_factory=list)
    cloze_count: int = 0


@dataclass(frozen=True)
class ClozePart:
    """A display fragment: plain text, a blank, or a revealed answer."""

    kind: Literal["text", "blank", "revealed"]
    content: str
    hint: Optional[str] = None


def parse_cloze_text(text: str) -> ClozeParseResult:
    """
    Split ``text`` into plain-text and deletion segments.

    Returns:
        ClozeParseResult: The segments in order, and ``cloze_count``, the
        highest slot number seen (0 when the text has no deletions).
    """
    parts: List[ClozeSegment] = []
    last_end = 0
    max_index = 0

    for match in CLOZE_PATTERN.finditer(text):
        if match.start() > last_end:
            parts.append(
                ClozeSegment(kind="text", content=text[last_end : match.start()])
            )
        index = int(match.group(1))
        max_index = max(max_index, index)
        parts.append(
            ClozeSegment(
                kind="cloze",
                content=match.group(2),
                hint=match.group(3),
                index=index,
            )
        )
        last_end = match.end()

    if last_end < len(text):
        parts.append(ClozeSegment(kind="text", content=text[last_end:]))

    return ClozeParseResult(parts=parts, cloze_count=max_index)


def render_cloze_question(text: str, show_index: int) -> str:
    """Hide slot ``show_index`` as ``[hint]`` or ``[...]``; show other slots."""

    def _replace(match: "re.Match[str]") -> str:
        if int(match.group(1)) == show_index:
            hint = match.group(3)
            return f"[{hint}]" if hint else f"[{BLANK_PLACEHOLDER}]"
        return match.group(2)

    return CLOZE_PATTERN.sub(_replace, text)


def render_cloze_answer(text: str, show_index: int) -> str:
    """Reveal slot ``show_index`` in bold; show other slots as plain text."""

    def _replace(match: "re.Match[str]") -> str:
        if int(match.group(1)) == show_index:
            return f"**{match.group(2)}**"
        return match.group(2)

    return CLOZE_PATTERN.sub(_replace, text)


def parse_cloze_for_display(
    text: str, show_index: int, is_answer: bool
) -> List[ClozePart]:
    """
    Break ``text`` into display fragments for slot ``show_index``.

    The target slot becomes a ``blank`` (question side) or ``revealed``
    (answer side) fragment; every other deletion and all surrounding text
    becomes ``text``.
    """
    fragments: List[ClozePart] = []
    for segment in parse_cloze_text(text).parts:
        if segment.kind == "text" or segment.index != show_index:
            fragments.append(ClozePart(kind="text", content=segment.content))
        elif is_answer:
            fragments.append(
                ClozePart(
                    kind="revealed", content=segment.content, hint=segment.hint
                )
            )
        else:
            fragments.append(
                ClozePart(
                    kind="blank",
                    content=segment.hint or BLANK_PLACEHOLDER,
                    hint=segment.hint,
                )
            )
    return fragments


def create_cloze_items(
    deck_id: str,
    text: str,
    back: str,
    config: SchedulerConfig,
    now: datetime,
    tags: Iterable[str] = (),
) -> List[Item]:
    """
    Expand a cloze template into one new item per slot, ``1..cloze_count``.

    Every item carries the whole template as its front and differs only in
    ``cloze_index``.

    Raises:
        CardValidationError: If the text contains no deletions, or a slot
            number above MAX_CLOZE_SLOT.
    """
    cloze_count = parse_cloze_text(text).cloze_count
    if cloze_count == 0:
        raise CardValidationError(
            [
                "Cloze cards must have at least one cloze deletion "
                "(e.g., {{c1::text}})"
            ]
        )
    if cloze_count > MAX_CLOZE_SLOT:
        raise CardValidationError(
            [
                f"Cloze slot numbers cannot exceed c{MAX_CLOZE_SLOT} "
                f"(found c{cloze_count})"
            ]
        )

    items = [
        Item(
            deck_id=deck_id,
            card_type=CardType.Cloze,
            front=text,
            back=back or text,
            tags=frozenset(tags),
            cloze_index=index,
            ease_factor=config.default_ease_factor,
            next_review=now,
            created_at=now,
            updated_at=now,
        )
        for index in range(1, cloze_count + 1)
    ]
    logger.debug(f"Expanded cloze template into {len(items)} items for deck '{deck_id}'")
    return items

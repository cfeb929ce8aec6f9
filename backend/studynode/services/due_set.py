"""
Due-set selection: order cards by urgency for study queues and the
"nearest review" widget.

Urgency order is ascending (next_review, id). Nothing here mutates the cards.
"""
from __future__ import annotations

import heapq
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from itertools import takewhile
from typing import Generic, Protocol, TypeVar

from studynode.services.scheduler import to_utc


class Schedulable(Protocol):
    @property
    def id(self) -> str: ...

    @property
    def next_review(self) -> datetime: ...


CardT = TypeVar("CardT", bound=Schedulable)


@dataclass
class DueSelection(Generic[CardT]):
    due: list[CardT] = field(default_factory=list)
    total_due: int = 0
    nearest: CardT | None = None


def iter_by_urgency(cards: Iterable[CardT]) -> Iterator[CardT]:
    """
    Yield every card, most urgent first.

    Lazy: the heap is built on first use and cards are popped one at a time,
    so taking the first few of a large collection stays cheap. Call again
    with the same input to restart.
    """
    heap = [
        (to_utc(card.next_review), str(card.id), i, card)
        for i, card in enumerate(cards)
    ]
    heapq.heapify(heap)
    while heap:
        yield heapq.heappop(heap)[-1]


def iter_due(cards: Iterable[CardT], now: datetime) -> Iterator[CardT]:
    """Yield cards with next_review <= now, most overdue first."""
    now = to_utc(now)
    return takewhile(lambda c: to_utc(c.next_review) <= now, iter_by_urgency(cards))


def nearest_review(cards: Iterable[CardT]) -> CardT | None:
    """The most overdue card, or the next one to come due if none is due yet."""
    return next(iter_by_urgency(cards), None)


def select_due(
    cards: Iterable[CardT], now: datetime, limit: int | None = None
) -> DueSelection[CardT]:
    now = to_utc(now)
    selection: DueSelection[CardT] = DueSelection()
    for card in iter_by_urgency(cards):
        if selection.nearest is None:
            selection.nearest = card
        if to_utc(card.next_review) > now:
            break
        selection.total_due += 1
        if limit is None or len(selection.due) < limit:
            selection.due.append(card)
    return selection

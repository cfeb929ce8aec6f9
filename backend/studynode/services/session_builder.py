"""
Quiz and match session builders.

Both follow urgency order (most overdue first, then the soonest upcoming).

Quiz: each question offers the card's answer plus distractors drawn from the
other answers in the same card set.

Match: the questions and their answers are dealt out separately, with the
answers shuffled. Answer ids are a hash of the normalised answer text, so a
submission can be scored without session state and without exposing which
card an answer belongs to.
"""
from __future__ import annotations

import hashlib
import random
import string
from collections.abc import Iterable
from itertools import islice

from studynode.models.flashcard import (
    CardProgress,
    Flashcard,
    MatchAnswer,
    MatchQuestion,
    QuizOption,
    QuizQuestion,
)
from studynode.services.due_set import iter_by_urgency


def normalize_answer(text: str) -> str:
    return " ".join(text.split()).casefold()


def is_correct_answer(selected: str, expected: str) -> bool:
    return normalize_answer(selected) == normalize_answer(expected)


def build_session(
    cards: Iterable[Flashcard],
    limit: int = 20,
    option_count: int = 4,
    rng: random.Random | None = None,
) -> list[QuizQuestion]:
    rng = rng or random.Random()
    cards = list(cards)

    # Distinct answers in card order, keyed on their normalised form
    answers: dict[str, str] = {}
    for card in cards:
        answers.setdefault(normalize_answer(card.answer), card.answer)

    questions: list[QuizQuestion] = []
    for card in islice(iter_by_urgency(cards), limit):
        own = normalize_answer(card.answer)
        pool = [text for key, text in answers.items() if key != own]
        distractors = rng.sample(pool, min(max(option_count - 1, 0), len(pool)))
        texts = [card.answer, *distractors]
        rng.shuffle(texts)
        questions.append(
            QuizQuestion(
                flashcard_id=card.id,
                question=card.question,
                options=[
                    QuizOption(id=string.ascii_lowercase[i], text=text)
                    for i, text in enumerate(texts)
                ],
                correct_answer=card.answer,
                progress=CardProgress(
                    repetitions=card.repetitions,
                    ease_factor=card.ease_factor,
                    interval=card.interval,
                ),
            )
        )
    return questions


def match_key(answer: str) -> str:
    return hashlib.sha1(normalize_answer(answer).encode("utf-8")).hexdigest()[:12]


def build_match_session(
    cards: Iterable[Flashcard],
    limit: int = 6,
    rng: random.Random | None = None,
) -> tuple[list[MatchQuestion], list[MatchAnswer]]:
    """Deal out the most urgent cards as questions plus a shuffled answer column."""
    rng = rng or random.Random()
    picked = list(islice(iter_by_urgency(list(cards)), limit))

    questions = [MatchQuestion(id=card.id, question=card.question) for card in picked]
    answers: dict[str, MatchAnswer] = {}
    for card in picked:
        key = match_key(card.answer)
        answers.setdefault(key, MatchAnswer(id=key, answer=card.answer))

    shuffled = list(answers.values())
    rng.shuffle(shuffled)
    return questions, shuffled

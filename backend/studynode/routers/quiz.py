"""
Quiz & Spaced Repetition router.

Endpoints:
  POST /quiz/cards            — add a card with a fresh review state
  GET  /quiz/cards            — list all cards (optionally filtered by deck_id)
  GET  /quiz/due              — due queue, most overdue first, plus nearest card
  GET  /quiz/session/{deck}   — multiple-choice session ordered by urgency
  GET  /quiz/match/{deck}     — match session: urgent questions + shuffled answers
  POST /quiz/match/{deck}/answer — score question/answer pairs; each graded GOOD or AGAIN
  GET  /quiz/stats            — summary stats (total, due, learned, per-deck)
  POST /quiz/{id}/review      — submit a quality, run SM-2, persist
  POST /quiz/{id}/answer      — submit a chosen answer; graded GOOD or AGAIN
  POST /quiz/{id}/reset       — restore default review state (logged recovery)
  GET  /quiz/{id}             — single card
  PATCH/quiz/{id}             — edit question / answer / explanation
  DELETE /quiz/{id}           — delete card
"""
from __future__ import annotations

import logging
import random
from datetime import datetime, timezone

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from studynode.config import settings
from studynode.db.sqlite import (
    all_flashcards,
    apply_review,
    create_flashcard,
    delete_flashcard,
    get_db,
    get_deck,
    get_flashcard,
    get_quiz_stats,
    list_flashcards,
    reset_review_state,
    update_flashcard_content,
)
from studynode.models.flashcard import (
    AnswerRequest,
    AnswerResult,
    DueQueue,
    Flashcard,
    FlashcardCreate,
    FlashcardList,
    FlashcardUpdate,
    MatchPairResult,
    MatchResult,
    MatchSession,
    MatchSubmission,
    QuizSession,
    ReviewRequest,
    ReviewResult,
    SessionStatistics,
)
from studynode.services.due_set import select_due
from studynode.services.scheduler import (
    Grade,
    InvalidStateError,
    Quality,
    SchedulerParams,
    initial_state,
    parse_quality,
    schedule_review,
)
from studynode.services.session_builder import (
    build_match_session,
    build_session,
    is_correct_answer,
    match_key,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def get_scheduler_params(request: Request) -> SchedulerParams:
    """Scheduler constants, validated once at startup."""
    return request.app.state.scheduler_params


async def _grade_card(
    db: aiosqlite.Connection,
    card_id: str,
    quality: Quality,
    params: SchedulerParams,
) -> ReviewResult:
    """
    Run the scheduler for one grading event and persist it.

    A lost optimistic-lock race re-reads the card and replays the same event
    (same quality, same graded_at). The stored state is untouched unless a
    write succeeds.
    """
    graded_at = datetime.now(timezone.utc)

    for attempt in range(1 + settings.review_write_retries):
        card = await get_flashcard(db, card_id)
        if not card:
            raise HTTPException(status_code=404, detail="Flashcard not found")

        try:
            result = schedule_review(card.review_state(), quality, graded_at, params)
        except InvalidStateError:
            logger.error(
                "Corrupt review state for card %s (ease=%r interval=%r repetitions=%r)",
                card_id, card.ease_factor, card.interval, card.repetitions,
            )
            raise

        updated = await apply_review(db, card, result)
        if updated:
            return ReviewResult(
                id=card_id,
                quality=int(result.quality),
                correct=not result.lapsed,
                ease_factor=updated.ease_factor,
                interval=updated.interval,
                repetitions=updated.repetitions,
                next_review=result.next_review,
                last_reviewed_at=result.last_reviewed_at,
                phase=result.phase,
            )
        logger.info(
            "Review write conflict on card %s (attempt %d), replaying", card_id, attempt + 1
        )

    logger.warning(
        "Giving up on review of card %s after %d conflicting writes",
        card_id, 1 + settings.review_write_retries,
    )
    raise HTTPException(
        status_code=409, detail="Flashcard was modified concurrently; resubmit the grade"
    )


# --- Endpoints ---

@router.post("/cards", response_model=Flashcard, status_code=201)
async def add_card(
    body: FlashcardCreate,
    db: aiosqlite.Connection = Depends(get_db),
    params: SchedulerParams = Depends(get_scheduler_params),
) -> Flashcard:
    """Add a flashcard to a deck. It is due immediately."""
    if not await get_deck(db, body.deck_id):
        raise HTTPException(status_code=404, detail="Deck not found")
    state = initial_state(params)
    return await create_flashcard(db, body, state, datetime.now(timezone.utc))


@router.get("/cards", response_model=FlashcardList)
async def list_cards(
    deck_id: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: aiosqlite.Connection = Depends(get_db),
) -> FlashcardList:
    """List all flashcards, optionally filtered by deck."""
    items, total = await list_flashcards(db, deck_id=deck_id, offset=offset, limit=limit)
    return FlashcardList(items=items, total=total)


@router.get("/due", response_model=DueQueue)
async def get_due(
    limit: int = Query(default=settings.queue_limit, ge=1, le=200),
    deck_id: str | None = Query(default=None),
    db: aiosqlite.Connection = Depends(get_db),
) -> DueQueue:
    """Return cards due now, most overdue first, and the nearest card overall."""
    cards = await all_flashcards(db, deck_id=deck_id)
    selection = select_due(cards, datetime.now(timezone.utc), limit=limit)
    return DueQueue(
        items=selection.due, total_due=selection.total_due, nearest=selection.nearest
    )


@router.get("/session/{deck_id}", response_model=QuizSession)
async def start_session(
    deck_id: str,
    limit: int = Query(default=settings.queue_limit, ge=1, le=100),
    options: int = Query(default=settings.session_option_count, ge=2, le=8),
    seed: int | None = Query(default=None),
    db: aiosqlite.Connection = Depends(get_db),
    params: SchedulerParams = Depends(get_scheduler_params),
) -> QuizSession:
    """Build a multiple-choice session for a deck, most urgent cards first."""
    deck = await get_deck(db, deck_id)
    if not deck:
        raise HTTPException(status_code=404, detail="Deck not found")

    cards = await all_flashcards(db, deck_id=deck_id)
    graduating = params.graduating_repetitions
    selection = select_due(cards, datetime.now(timezone.utc))
    questions = build_session(
        cards, limit=limit, option_count=options, rng=random.Random(seed)
    )
    return QuizSession(
        deck_id=deck.id,
        deck_name=deck.name,
        total_questions=len(questions),
        questions=questions,
        statistics=SessionStatistics(
            total_cards=len(cards),
            learned_cards=sum(1 for c in cards if c.repetitions >= graduating),
            due_for_review=selection.total_due,
        ),
    )


@router.get("/stats")
async def quiz_stats(
    db: aiosqlite.Connection = Depends(get_db),
    params: SchedulerParams = Depends(get_scheduler_params),
) -> dict:
    """Return summary statistics: total cards, due now, learned, per-deck breakdown."""
    return await get_quiz_stats(
        db,
        datetime.now(timezone.utc),
        params.graduating_repetitions,
    )


@router.get("/match/{deck_id}", response_model=MatchSession)
async def start_match(
    deck_id: str,
    limit: int = Query(default=6, ge=2, le=20),
    seed: int | None = Query(default=None),
    db: aiosqlite.Connection = Depends(get_db),
) -> MatchSession:
    """Deal the most urgent cards of a deck as a question column and a shuffled answer column."""
    deck = await get_deck(db, deck_id)
    if not deck:
        raise HTTPException(status_code=404, detail="Deck not found")

    cards = await all_flashcards(db, deck_id=deck_id)
    questions, answers = build_match_session(cards, limit=limit, rng=random.Random(seed))
    return MatchSession(
        deck_id=deck.id, deck_name=deck.name, questions=questions, answers=answers
    )


@router.post("/match/{deck_id}/answer", response_model=MatchResult)
async def answer_match(
    deck_id: str,
    body: MatchSubmission,
    db: aiosqlite.Connection = Depends(get_db),
    params: SchedulerParams = Depends(get_scheduler_params),
) -> MatchResult:
    """
    Score question/answer pairs from a match session.

    Every pair is checked before anything is graded, so a bad submission
    leaves all cards untouched. Each card is then graded GOOD or AGAIN.
    """
    if not await get_deck(db, deck_id):
        raise HTTPException(status_code=404, detail="Deck not found")

    cards: dict[str, Flashcard] = {}
    for pair in body.matches:
        if pair.question_id in cards:
            raise HTTPException(
                status_code=422, detail=f"Card {pair.question_id} matched more than once"
            )
        card = await get_flashcard(db, pair.question_id)
        if not card or card.deck_id != deck_id:
            raise HTTPException(
                status_code=422, detail=f"Card {pair.question_id} is not in this deck"
            )
        cards[pair.question_id] = card

    results: list[MatchPairResult] = []
    for pair in body.matches:
        card = cards[pair.question_id]
        correct = match_key(card.answer) == pair.answer_id
        grade = Grade.GOOD if correct else Grade.AGAIN
        review = await _grade_card(db, card.id, parse_quality(grade), params)
        results.append(
            MatchPairResult(
                question_id=card.id,
                answer_id=pair.answer_id,
                correct=correct,
                correct_answer=card.answer,
                review=review,
            )
        )

    return MatchResult(
        correct_matches=sum(1 for r in results if r.correct),
        total_matches=len(results),
        results=results,
    )


@router.post("/{card_id}/review", response_model=ReviewResult)
async def review_card(
    card_id: str,
    body: ReviewRequest,
    db: aiosqlite.Connection = Depends(get_db),
    params: SchedulerParams = Depends(get_scheduler_params),
) -> ReviewResult:
    """Submit a review quality for a flashcard and run SM-2."""
    quality = parse_quality(body.quality)
    return await _grade_card(db, card_id, quality, params)


@router.post("/{card_id}/answer", response_model=AnswerResult)
async def answer_card(
    card_id: str,
    body: AnswerRequest,
    db: aiosqlite.Connection = Depends(get_db),
    params: SchedulerParams = Depends(get_scheduler_params),
) -> AnswerResult:
    """Check a multiple-choice answer; a right answer counts as GOOD, a wrong one as AGAIN."""
    card = await get_flashcard(db, card_id)
    if not card:
        raise HTTPException(status_code=404, detail="Flashcard not found")

    correct = is_correct_answer(body.selected_answer, card.answer)
    grade = Grade.GOOD if correct else Grade.AGAIN
    review = await _grade_card(db, card_id, parse_quality(grade), params)
    return AnswerResult(
        correct=correct,
        selected_answer=body.selected_answer,
        correct_answer=card.answer,
        explanation=card.explanation,
        review=review,
    )


@router.post("/{card_id}/reset", response_model=Flashcard)
async def reset_card(
    card_id: str,
    db: aiosqlite.Connection = Depends(get_db),
    params: SchedulerParams = Depends(get_scheduler_params),
) -> Flashcard:
    """Restore a card's review state to defaults, e.g. after corrupt data was detected."""
    card = await get_flashcard(db, card_id)
    if not card:
        raise HTTPException(status_code=404, detail="Flashcard not found")

    state = initial_state(params)
    logger.warning(
        "Resetting review state of card %s (was ease=%r interval=%r repetitions=%r)",
        card_id, card.ease_factor, card.interval, card.repetitions,
    )
    updated = await reset_review_state(db, card_id, state, datetime.now(timezone.utc))
    if not updated:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return updated


@router.get("/{card_id}", response_model=Flashcard)
async def get_card(
    card_id: str,
    db: aiosqlite.Connection = Depends(get_db),
) -> Flashcard:
    card = await get_flashcard(db, card_id)
    if not card:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return card


@router.patch("/{card_id}", response_model=Flashcard)
async def edit_card(
    card_id: str,
    body: FlashcardUpdate,
    db: aiosqlite.Connection = Depends(get_db),
) -> Flashcard:
    updated = await update_flashcard_content(db, card_id, body)
    if not updated:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return updated


@router.delete("/{card_id}", status_code=204)
async def remove_card(
    card_id: str,
    db: aiosqlite.Connection = Depends(get_db),
) -> None:
    deleted = await delete_flashcard(db, card_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Flashcard not found")

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from studynode.config import settings
from studynode.models.deck import Deck, DeckCreate, DeckProgress, DeckUpdate
from studynode.models.flashcard import Flashcard, FlashcardCreate, FlashcardUpdate
from studynode.services.scheduler import ReviewState, ScheduledReview, to_utc

_db_path: Path | None = None

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS decks (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    description TEXT DEFAULT '',
    category    TEXT DEFAULT '',
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS flashcards (
    id          TEXT PRIMARY KEY,
    deck_id     TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
    question    TEXT NOT NULL,
    answer      TEXT NOT NULL,
    explanation TEXT DEFAULT '',
    ease_factor REAL NOT NULL DEFAULT 2.5,
    interval    INTEGER NOT NULL DEFAULT 0,
    repetitions INTEGER NOT NULL DEFAULT 0,
    next_review TEXT NOT NULL,
    last_reviewed_at TEXT,
    version     INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_flashcards_deck ON flashcards(deck_id);
CREATE INDEX IF NOT EXISTS idx_flashcards_review ON flashcards(next_review);

CREATE TABLE IF NOT EXISTS review_log (
    id           TEXT PRIMARY KEY,
    flashcard_id TEXT NOT NULL REFERENCES flashcards(id) ON DELETE CASCADE,
    deck_id      TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
    quality      INTEGER NOT NULL,
    correct      INTEGER NOT NULL,
    ease_factor  REAL NOT NULL,
    interval     INTEGER NOT NULL,
    repetitions  INTEGER NOT NULL,
    graded_at    TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_review_log_card ON review_log(flashcard_id);
CREATE INDEX IF NOT EXISTS idx_review_log_deck ON review_log(deck_id);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
INSERT OR IGNORE INTO schema_version(version) VALUES (1);
"""


async def init_sqlite(data_dir: Path) -> None:
    global _db_path
    _db_path = data_dir / settings.sqlite_filename
    async with aiosqlite.connect(_db_path) as db:
        await db.executescript(SCHEMA_SQL)
        await db.commit()


async def get_db() -> AsyncIterator[aiosqlite.Connection]:
    assert _db_path is not None, "SQLite not initialized"
    async with aiosqlite.connect(_db_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys=ON")
        yield db


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def to_iso(value: datetime) -> str:
    """Fixed-width UTC ISO-8601, so stored timestamps also sort as text."""
    return to_utc(value).isoformat(timespec="microseconds")


# --- Decks ---


def _row_to_deck(row: aiosqlite.Row) -> Deck:
    return Deck(**dict(row))


async def create_deck(db: aiosqlite.Connection, deck: DeckCreate) -> Deck:
    deck_id = str(uuid.uuid4())
    now = _now()
    await db.execute(
        """INSERT INTO decks (id, name, description, category, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (deck_id, deck.name, deck.description, deck.category, now, now),
    )
    await db.commit()
    return await get_deck(db, deck_id)  # type: ignore[return-value]


async def get_deck(db: aiosqlite.Connection, deck_id: str) -> Deck | None:
    cursor = await db.execute("SELECT * FROM decks WHERE id = ?", (deck_id,))
    row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_deck(row)


async def list_decks(
    db: aiosqlite.Connection, offset: int = 0, limit: int = 50
) -> tuple[list[Deck], int]:
    cursor = await db.execute("SELECT COUNT(*) FROM decks")
    total = (await cursor.fetchone())[0]

    cursor = await db.execute(
        "SELECT * FROM decks ORDER BY created_at DESC, name ASC LIMIT ? OFFSET ?",
        (limit, offset),
    )
    rows = await cursor.fetchall()
    return [_row_to_deck(r) for r in rows], total


async def update_deck(
    db: aiosqlite.Connection, deck_id: str, updates: DeckUpdate
) -> Deck | None:
    fields = updates.model_dump(exclude_none=True)
    if not fields:
        return await get_deck(db, deck_id)

    fields["updated_at"] = _now()
    set_clause = ", ".join(f"{k} = ?" for k in fields)
    values = list(fields.values()) + [deck_id]

    await db.execute(
        f"UPDATE decks SET {set_clause} WHERE id = ?",  # noqa: S608
        values,
    )
    await db.commit()
    return await get_deck(db, deck_id)


async def delete_deck(db: aiosqlite.Connection, deck_id: str) -> bool:
    cursor = await db.execute("DELETE FROM decks WHERE id = ?", (deck_id,))
    await db.commit()
    return (cursor.rowcount or 0) > 0


async def get_deck_progress(db: aiosqlite.Connection, deck_id: str) -> DeckProgress:
    cursor = await db.execute(
        "SELECT COUNT(*) FROM flashcards WHERE deck_id = ?", (deck_id,)
    )
    total_flashcards = (await cursor.fetchone())[0]

    cursor = await db.execute(
        "SELECT COUNT(*), COALESCE(SUM(correct), 0) FROM review_log WHERE deck_id = ?",
        (deck_id,),
    )
    total_reviews, correct_reviews = await cursor.fetchone()
    performance = 100.0 * correct_reviews / total_reviews if total_reviews else 0.0
    return DeckProgress(
        total_flashcards=total_flashcards,
        total_reviews=total_reviews,
        correct_reviews=correct_reviews,
        performance=performance,
    )


# --- Flashcards ---


def _row_to_flashcard(row: aiosqlite.Row) -> Flashcard:
    return Flashcard(**dict(row))


async def create_flashcard(
    db: aiosqlite.Connection,
    card: FlashcardCreate,
    state: ReviewState,
    due_at: datetime,
) -> Flashcard:
    card_id = str(uuid.uuid4())
    now = _now()
    await db.execute(
        """INSERT INTO flashcards
           (id, deck_id, question, answer, explanation,
            ease_factor, interval, repetitions, next_review, version,
            created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)""",
        (
            card_id,
            card.deck_id,
            card.question,
            card.answer,
            card.explanation,
            state.ease_factor,
            state.interval,
            state.repetitions,
            to_iso(due_at),
            now,
            now,
        ),
    )
    await db.commit()
    return await get_flashcard(db, card_id)  # type: ignore[return-value]


async def get_flashcard(db: aiosqlite.Connection, card_id: str) -> Flashcard | None:
    cursor = await db.execute("SELECT * FROM flashcards WHERE id = ?", (card_id,))
    row = await cursor.fetchone()
    return _row_to_flashcard(row) if row else None


async def list_flashcards(
    db: aiosqlite.Connection,
    deck_id: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[Flashcard], int]:
    if deck_id:
        cursor = await db.execute(
            "SELECT * FROM flashcards WHERE deck_id = ? ORDER BY created_at ASC, id ASC LIMIT ? OFFSET ?",
            (deck_id, limit, offset),
        )
        count_cursor = await db.execute(
            "SELECT COUNT(*) FROM flashcards WHERE deck_id = ?", (deck_id,)
        )
    else:
        cursor = await db.execute(
            "SELECT * FROM flashcards ORDER BY created_at ASC, id ASC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        count_cursor = await db.execute("SELECT COUNT(*) FROM flashcards")
    rows = await cursor.fetchall()
    count_row = await count_cursor.fetchone()
    total = count_row[0] if count_row else 0
    return [_row_to_flashcard(r) for r in rows], total


async def all_flashcards(
    db: aiosqlite.Connection, deck_id: str | None = None
) -> list[Flashcard]:
    """Every card in scope, unordered; ordering is the due-set selector's job."""
    if deck_id:
        cursor = await db.execute(
            "SELECT * FROM flashcards WHERE deck_id = ?", (deck_id,)
        )
    else:
        cursor = await db.execute("SELECT * FROM flashcards")
    rows = await cursor.fetchall()
    return [_row_to_flashcard(r) for r in rows]


async def apply_review(
    db: aiosqlite.Connection,
    card: Flashcard,
    result: ScheduledReview,
) -> Flashcard | None:
    """
    Write a scheduled review back, guarded by the card's version.

    Returns None when another write got there first; nothing is changed in
    that case and the caller should re-read and replay.
    """
    cursor = await db.execute(
        """UPDATE flashcards
           SET ease_factor = ?, interval = ?, repetitions = ?, next_review = ?,
               last_reviewed_at = ?, version = version + 1, updated_at = ?
           WHERE id = ? AND version = ?""",
        (
            result.ease_factor,
            result.interval,
            result.repetitions,
            to_iso(result.next_review),
            to_iso(result.last_reviewed_at),
            _now(),
            card.id,
            card.version,
        ),
    )
    if (cursor.rowcount or 0) == 0:
        await db.rollback()
        return None

    await db.execute(
        """INSERT INTO review_log
           (id, flashcard_id, deck_id, quality, correct,
            ease_factor, interval, repetitions, graded_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            str(uuid.uuid4()),
            card.id,
            card.deck_id,
            int(result.quality),
            0 if result.lapsed else 1,
            result.ease_factor,
            result.interval,
            result.repetitions,
            to_iso(result.last_reviewed_at),
        ),
    )
    await db.commit()
    return await get_flashcard(db, card.id)


async def reset_review_state(
    db: aiosqlite.Connection,
    card_id: str,
    state: ReviewState,
    due_at: datetime,
) -> Flashcard | None:
    await db.execute(
        """UPDATE flashcards
           SET ease_factor = ?, interval = ?, repetitions = ?, next_review = ?,
               last_reviewed_at = NULL, version = version + 1, updated_at = ?
           WHERE id = ?""",
        (
            state.ease_factor,
            state.interval,
            state.repetitions,
            to_iso(due_at),
            _now(),
            card_id,
        ),
    )
    await db.commit()
    return await get_flashcard(db, card_id)


async def update_flashcard_content(
    db: aiosqlite.Connection,
    card_id: str,
    update: FlashcardUpdate,
) -> Flashcard | None:
    card = await get_flashcard(db, card_id)
    if not card:
        return None
    new_q = update.question if update.question is not None else card.question
    new_a = update.answer if update.answer is not None else card.answer
    new_e = update.explanation if update.explanation is not None else card.explanation
    now = _now()
    await db.execute(
        "UPDATE flashcards SET question = ?, answer = ?, explanation = ?, updated_at = ? WHERE id = ?",
        (new_q, new_a, new_e, now, card_id),
    )
    await db.commit()
    return await get_flashcard(db, card_id)


async def delete_flashcard(db: aiosqlite.Connection, card_id: str) -> bool:
    cursor = await db.execute("DELETE FROM flashcards WHERE id = ?", (card_id,))
    await db.commit()
    return (cursor.rowcount or 0) > 0


async def get_quiz_stats(
    db: aiosqlite.Connection, now: datetime, graduating_repetitions: int
) -> dict:
    """Return total, due and learned card counts, overall and per deck."""
    now_iso = to_iso(now)
    cursor = await db.execute(
        """SELECT COUNT(*),
                  COALESCE(SUM(CASE WHEN next_review <= ? THEN 1 ELSE 0 END), 0),
                  COALESCE(SUM(CASE WHEN repetitions >= ? THEN 1 ELSE 0 END), 0)
           FROM flashcards""",
        (now_iso, graduating_repetitions),
    )
    total_cards, due_now, learned = await cursor.fetchone()

    per_deck_cursor = await db.execute(
        """SELECT d.id, d.name,
                  COUNT(f.id) as total,
                  COALESCE(SUM(CASE WHEN f.next_review <= ? THEN 1 ELSE 0 END), 0) as due,
                  COALESCE(SUM(CASE WHEN f.repetitions >= ? THEN 1 ELSE 0 END), 0) as learned
           FROM decks d
           LEFT JOIN flashcards f ON f.deck_id = d.id
           GROUP BY d.id
           ORDER BY d.name ASC""",
        (now_iso, graduating_repetitions),
    )
    per_deck_rows = await per_deck_cursor.fetchall()
    per_deck = [
        {
            "deck_id": row[0],
            "name": row[1],
            "total": row[2],
            "due": row[3],
            "learned": row[4],
        }
        for row in per_deck_rows
    ]

    return {
        "total_cards": total_cards,
        "due_now": due_now,
        "learned_cards": learned,
        "per_deck": per_deck,
    }

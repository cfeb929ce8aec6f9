import aiosqlite
from fastapi import APIRouter, Depends, HTTPException

from studynode.db.sqlite import (
    all_flashcards,
    create_deck,
    delete_deck,
    get_db,
    get_deck,
    get_deck_progress,
    list_decks,
    update_deck,
)
from studynode.models.deck import (
    Deck,
    DeckCreate,
    DeckList,
    DeckProgress,
    DeckUpdate,
    NearestReviewDeck,
)
from studynode.services.due_set import nearest_review

router = APIRouter()


@router.post("/", response_model=Deck, status_code=201)
async def create_new_deck(body: DeckCreate, db: aiosqlite.Connection = Depends(get_db)):
    return await create_deck(db, body)


@router.get("/", response_model=DeckList)
async def list_all_decks(
    offset: int = 0, limit: int = 50, db: aiosqlite.Connection = Depends(get_db)
):
    items, total = await list_decks(db, offset, limit)
    return DeckList(items=items, total=total, offset=offset, limit=limit)


@router.get("/nearest-review", response_model=NearestReviewDeck | None)
async def get_nearest_review_deck(db: aiosqlite.Connection = Depends(get_db)):
    """The deck holding the most urgent card, or null when there are no cards."""
    card = nearest_review(await all_flashcards(db))
    if card is None:
        return None
    deck = await get_deck(db, card.deck_id)
    if not deck:
        raise HTTPException(status_code=404, detail="Deck not found")
    return NearestReviewDeck(
        deck=deck,
        nearest_review=card,
        progress_stats=await get_deck_progress(db, deck.id),
    )


@router.get("/{deck_id}", response_model=Deck)
async def get_single_deck(deck_id: str, db: aiosqlite.Connection = Depends(get_db)):
    deck = await get_deck(db, deck_id)
    if not deck:
        raise HTTPException(status_code=404, detail="Deck not found")
    return deck


@router.get("/{deck_id}/progress", response_model=DeckProgress)
async def get_progress(deck_id: str, db: aiosqlite.Connection = Depends(get_db)):
    if not await get_deck(db, deck_id):
        raise HTTPException(status_code=404, detail="Deck not found")
    return await get_deck_progress(db, deck_id)


@router.patch("/{deck_id}", response_model=Deck)
async def update_single_deck(
    deck_id: str, body: DeckUpdate, db: aiosqlite.Connection = Depends(get_db)
):
    deck = await update_deck(db, deck_id, body)
    if not deck:
        raise HTTPException(status_code=404, detail="Deck not found")
    return deck


@router.delete("/{deck_id}", status_code=204)
async def delete_single_deck(deck_id: str, db: aiosqlite.Connection = Depends(get_db)):
    deleted = await delete_deck(db, deck_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Deck not found")

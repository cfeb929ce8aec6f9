from pydantic import BaseModel, Field

from studynode.models.flashcard import Flashcard


class DeckCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    category: str = ""


class DeckUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    category: str | None = None


class Deck(BaseModel):
    id: str
    name: str
    description: str
    category: str
    created_at: str
    updated_at: str


class DeckList(BaseModel):
    items: list[Deck]
    total: int
    offset: int
    limit: int


class DeckProgress(BaseModel):
    total_flashcards: int
    total_reviews: int
    correct_reviews: int
    performance: float  # correct / total reviews, percent


class NearestReviewDeck(BaseModel):
    deck: Deck
    nearest_review: Flashcard
    progress_stats: DeckProgress

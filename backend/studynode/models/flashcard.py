from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, StrictInt, StrictStr

from studynode.services.scheduler import Phase, ReviewState


class FlashcardCreate(BaseModel):
    deck_id: str
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    explanation: str = ""


class Flashcard(BaseModel):
    id: str
    deck_id: str
    question: str
    answer: str
    explanation: str
    ease_factor: float
    interval: int           # days until next review
    repetitions: int        # consecutive correct recalls
    next_review: datetime
    last_reviewed_at: datetime | None = None
    version: int            # bumped on every review write (optimistic lock)
    created_at: str
    updated_at: str

    def review_state(self) -> ReviewState:
        return ReviewState(
            ease_factor=self.ease_factor,
            interval=self.interval,
            repetitions=self.repetitions,
        )


class FlashcardList(BaseModel):
    items: list[Flashcard]
    total: int


class FlashcardUpdate(BaseModel):
    question: str | None = None
    answer: str | None = None
    explanation: str | None = None


class ReviewRequest(BaseModel):
    quality: StrictInt | StrictStr  # 0–5, or again/fail, hard, good, easy


class ReviewResult(BaseModel):
    id: str
    quality: int
    correct: bool
    ease_factor: float
    interval: int
    repetitions: int
    next_review: datetime
    last_reviewed_at: datetime
    phase: Phase


class AnswerRequest(BaseModel):
    selected_answer: str


class AnswerResult(BaseModel):
    correct: bool
    selected_answer: str
    correct_answer: str
    explanation: str
    review: ReviewResult


class DueQueue(BaseModel):
    items: list[Flashcard]
    total_due: int
    nearest: Flashcard | None = None


class CardProgress(BaseModel):
    repetitions: int
    ease_factor: float
    interval: int


class QuizOption(BaseModel):
    id: str
    text: str


class QuizQuestion(BaseModel):
    flashcard_id: str
    question: str
    options: list[QuizOption]
    correct_answer: str
    progress: CardProgress


class SessionStatistics(BaseModel):
    total_cards: int
    learned_cards: int
    due_for_review: int


class QuizSession(BaseModel):
    deck_id: str
    deck_name: str
    total_questions: int
    questions: list[QuizQuestion]
    statistics: SessionStatistics


class MatchQuestion(BaseModel):
    id: str  # flashcard id
    question: str


class MatchAnswer(BaseModel):
    id: str  # opaque key of the answer text
    answer: str


class MatchSession(BaseModel):
    deck_id: str
    deck_name: str
    questions: list[MatchQuestion]
    answers: list[MatchAnswer]


class MatchPair(BaseModel):
    question_id: str
    answer_id: str


class MatchSubmission(BaseModel):
    matches: list[MatchPair] = Field(min_length=1)


class MatchPairResult(BaseModel):
    question_id: str
    answer_id: str
    correct: bool
    correct_answer: str
    review: ReviewResult


class MatchResult(BaseModel):
    correct_matches: int
    total_matches: int
    results: list[MatchPairResult]

from studynode.models.deck import (
    Deck,
    DeckCreate,
    DeckList,
    DeckProgress,
    DeckUpdate,
    NearestReviewDeck,
)
from studynode.models.flashcard import (
    AnswerRequest,
    AnswerResult,
    CardProgress,
    DueQueue,
    Flashcard,
    FlashcardCreate,
    FlashcardList,
    FlashcardUpdate,
    MatchAnswer,
    MatchPair,
    MatchPairResult,
    MatchQuestion,
    MatchResult,
    MatchSession,
    MatchSubmission,
    QuizOption,
    QuizQuestion,
    QuizSession,
    ReviewRequest,
    ReviewResult,
    SessionStatistics,
)

__all__ = [
    "AnswerRequest",
    "AnswerResult",
    "CardProgress",
    "Deck",
    "DeckCreate",
    "DeckList",
    "DeckProgress",
    "DeckUpdate",
    "DueQueue",
    "Flashcard",
    "FlashcardCreate",
    "FlashcardList",
    "FlashcardUpdate",
    "MatchAnswer",
    "MatchPair",
    "MatchPairResult",
    "MatchQuestion",
    "MatchResult",
    "MatchSession",
    "MatchSubmission",
    "NearestReviewDeck",
    "QuizOption",
    "QuizQuestion",
    "QuizSession",
    "ReviewRequest",
    "ReviewResult",
    "SessionStatistics",
]

"""
SM-2 review scheduler.

schedule_review() is pure: the next review state depends only on
(state, quality, graded_at, params). Persisting the result is the caller's job.

Quality uses the SM-2 scale 0–5. Anything at or above params.passing_quality
is a successful recall; anything below is a lapse.

  success: EF' = max(floor, EF + 0.1 - (5-q) * (0.08 + (5-q) * 0.02))
           interval follows the learning ladder (1, 6) while repetitions is
           below its length, then round(interval * EF')
  lapse:   repetitions = 0, interval = lapse_interval,
           EF' = max(floor, EF - lapse_ease_penalty)

next_review = graded_at + interval days (whole days, UTC).

round() is Python's round-half-to-even: round(12.5) == 12, where a
round-half-up rule (e.g. JavaScript Math.round) would give 13. Only exact .5
products are affected, and the result is still deterministic.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum


class SchedulerError(Exception):
    """Base class for review scheduling failures."""


class InvalidGradeError(SchedulerError, ValueError):
    """Raised when a grading signal is outside the accepted discrete range."""


class InvalidStateError(SchedulerError):
    """Raised when a review state breaks its invariants (treat as data corruption)."""


class Quality(IntEnum):
    BLACKOUT = 0
    WRONG = 1
    WRONG_FAMILIAR = 2
    HARD = 3
    GOOD = 4
    EASY = 5


class Grade(str, Enum):
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


class Phase(str, Enum):
    LEARNING = "learning"
    REVIEW = "review"


_GRADE_QUALITY = {
    Grade.AGAIN: Quality.BLACKOUT,
    Grade.HARD: Quality.HARD,
    Grade.GOOD: Quality.GOOD,
    Grade.EASY: Quality.EASY,
}
_GRADE_ALIASES = {"fail": Grade.AGAIN}


@dataclass(frozen=True)
class SchedulerParams:
    initial_ease_factor: float = 2.5
    min_ease_factor: float = 1.3
    passing_quality: int = Quality.HARD
    learning_intervals: tuple[int, ...] = (1, 6)  # days, indexed by repetitions
    lapse_interval: int = 1
    lapse_ease_penalty: float = 0.2
    max_interval: int = 36500

    def __post_init__(self) -> None:
        if not self.min_ease_factor > 0:
            raise ValueError("min_ease_factor must be positive")
        if self.initial_ease_factor < self.min_ease_factor:
            raise ValueError("initial_ease_factor must not be below min_ease_factor")
        if not Quality.WRONG <= self.passing_quality <= Quality.EASY:
            raise ValueError("passing_quality must be between 1 and 5")
        if not self.learning_intervals:
            raise ValueError("learning_intervals must not be empty")
        if any(i < 1 for i in self.learning_intervals):
            raise ValueError("learning_intervals must be at least 1 day")
        if list(self.learning_intervals) != sorted(self.learning_intervals):
            raise ValueError("learning_intervals must be non-decreasing")
        if self.lapse_interval < 1:
            raise ValueError("lapse_interval must be at least 1 day")
        if self.lapse_ease_penalty < 0:
            raise ValueError("lapse_ease_penalty must not be negative")
        if self.max_interval < max(self.learning_intervals[-1], self.lapse_interval):
            raise ValueError("max_interval is shorter than a fixed interval")

    @property
    def graduating_repetitions(self) -> int:
        """Repetitions at which a card leaves the learning ladder."""
        return len(self.learning_intervals)


DEFAULT_PARAMS = SchedulerParams()


@dataclass(frozen=True)
class ReviewState:
    ease_factor: float
    interval: int
    repetitions: int


@dataclass(frozen=True)
class ScheduledReview:
    ease_factor: float
    interval: int
    repetitions: int
    next_review: datetime
    last_reviewed_at: datetime
    quality: Quality
    lapsed: bool
    phase: Phase

    @property
    def state(self) -> ReviewState:
        return ReviewState(self.ease_factor, self.interval, self.repetitions)


def to_utc(value: datetime) -> datetime:
    """Normalise to an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def initial_state(params: SchedulerParams = DEFAULT_PARAMS) -> ReviewState:
    return ReviewState(
        ease_factor=params.initial_ease_factor, interval=0, repetitions=0
    )


def phase_of(repetitions: int, params: SchedulerParams = DEFAULT_PARAMS) -> Phase:
    if repetitions < params.graduating_repetitions:
        return Phase.LEARNING
    return Phase.REVIEW


def parse_quality(value: object) -> Quality:
    """
    Convert a raw grading signal to Quality.

    Accepts a Quality, a Grade, an int 0–5, a digit string, or a grade name
    ("again"/"fail", "hard", "good", "easy"). Everything else is rejected.
    """
    if isinstance(value, Quality):
        return value
    if isinstance(value, Grade):
        return _GRADE_QUALITY[value]
    if isinstance(value, bool):
        raise InvalidGradeError("quality must not be a boolean")
    if isinstance(value, int):
        try:
            return Quality(value)
        except ValueError:
            raise InvalidGradeError(f"quality must be 0-5, got {value}") from None
    if isinstance(value, str):
        key = value.strip().lower()
        if key.isascii() and key.isdigit():
            if len(key) > 1:
                raise InvalidGradeError(f"quality must be 0-5, got {value!r}")
            return parse_quality(int(key))
        grade = _GRADE_ALIASES.get(key)
        if grade is None:
            try:
                grade = Grade(key)
            except ValueError:
                raise InvalidGradeError(f"unknown grade: {value!r}") from None
        return _GRADE_QUALITY[grade]
    raise InvalidGradeError(f"unsupported quality type: {type(value).__name__}")


def ease_delta(quality: int) -> float:
    return 0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)


def validate_state(state: ReviewState) -> None:
    ease = state.ease_factor
    if not isinstance(ease, (int, float)) or not math.isfinite(ease) or ease <= 0:
        raise InvalidStateError(f"ease_factor must be a positive number, got {ease!r}")
    if not isinstance(state.interval, int) or state.interval < 0:
        raise InvalidStateError(
            f"interval must be a non-negative integer, got {state.interval!r}"
        )
    if not isinstance(state.repetitions, int) or state.repetitions < 0:
        raise InvalidStateError(
            f"repetitions must be a non-negative integer, got {state.repetitions!r}"
        )


def schedule_review(
    state: ReviewState,
    quality: object,
    graded_at: datetime,
    params: SchedulerParams = DEFAULT_PARAMS,
) -> ScheduledReview:
    """Apply one grading event to a card's review state."""
    q = parse_quality(quality)
    validate_state(state)
    graded_at = to_utc(graded_at)

    lapsed = q < params.passing_quality
    if lapsed:
        ease = max(params.min_ease_factor, state.ease_factor - params.lapse_ease_penalty)
        interval = params.lapse_interval
        repetitions = 0
    else:
        ease = max(params.min_ease_factor, state.ease_factor + ease_delta(q))
        if state.repetitions < params.graduating_repetitions:
            interval = params.learning_intervals[state.repetitions]
        else:
            interval = max(1, round(state.interval * ease))
        interval = min(interval, params.max_interval)
        repetitions = state.repetitions + 1

    return ScheduledReview(
        ease_factor=ease,
        interval=interval,
        repetitions=repetitions,
        next_review=graded_at + timedelta(days=interval),
        last_reviewed_at=graded_at,
        quality=q,
        lapsed=lapsed,
        phase=phase_of(repetitions, params),
    )

from pathlib import Path

from pydantic_settings import BaseSettings

from studynode.services.scheduler import SchedulerParams


class Settings(BaseSettings):
    studynode_data_dir: Path = Path.home() / ".studynode" / "data"
    sqlite_filename: str = "studynode.db"

    # SM-2 tuning; see SchedulerParams for meaning
    initial_ease_factor: float = 2.5
    min_ease_factor: float = 1.3
    passing_quality: int = 3
    learning_intervals: tuple[int, ...] = (1, 6)
    lapse_interval: int = 1
    lapse_ease_penalty: float = 0.2
    max_interval: int = 36500

    review_write_retries: int = 3  # optimistic-lock replays per grading event
    queue_limit: int = 20
    session_option_count: int = 4

    model_config = {"env_prefix": "STUDYNODE_"}

    def scheduler_params(self) -> SchedulerParams:
        return SchedulerParams(
            initial_ease_factor=self.initial_ease_factor,
            min_ease_factor=self.min_ease_factor,
            passing_quality=self.passing_quality,
            learning_intervals=tuple(self.learning_intervals),
            lapse_interval=self.lapse_interval,
            lapse_ease_penalty=self.lapse_ease_penalty,
            max_interval=self.max_interval,
        )


settings = Settings()

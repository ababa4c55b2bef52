"""Pydantic settings loaded from .env."""
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = Field("./mathblitz.db")
    jwt_secret: str = Field("change-me-to-a-random-32-char-secret")
    token_expiry_s: int = Field(86400)
    client_url: str = Field("http://localhost:3000")
    admin_token: str = Field("")
    # Round timing
    first_round_delay_ms: int = Field(1000)
    round_advance_delay_ms: int = Field(3000)
    join_debounce_ms: int = Field(500)
    answer_tolerance: float = Field(0.01)
    # Difficulty ladder: participant count <= threshold selects the tier
    easy_max_participants: int = Field(2)
    medium_max_participants: int = Field(5)
    # Leaderboard
    leaderboard_default_limit: int = Field(10)
    leaderboard_max_limit: int = Field(50)
    # Rate limiting (per IP)
    api_rate_limit_requests: int = Field(100)
    api_rate_limit_window_s: float = Field(900)
    submit_rate_limit_requests: int = Field(5)
    submit_rate_limit_window_s: float = Field(1)
    user_rate_limit_requests: int = Field(3)
    user_rate_limit_window_s: float = Field(60)

    @model_validator(mode="after")
    def check_difficulty_ladder(self) -> "Settings":
        if self.easy_max_participants > self.medium_max_participants:
            raise ValueError(
                "easy_max_participants must not exceed medium_max_participants"
            )
        return self

    @property
    def difficulty_ladder(self) -> tuple[tuple[int, str], ...]:
        return (
            (self.easy_max_participants, "easy"),
            (self.medium_max_participants, "medium"),
        )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()

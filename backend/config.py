from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # CORS origins. Set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:4200",
        "http://localhost:4201",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    # Extra production origin; appended to allowed_origins
    extra_origin: str = ""
    debug: bool = False

    # Lobby defaults for newly created games (creator can change them pre-start)
    default_min_players: int = 3
    default_max_players: int = 20
    default_discussion_minutes: int = 5
    default_werewolf_count: int = 1
    game_id_length: int = 8

    # Phase timers (seconds). Discussion uses the per-game minutes setting.
    night_duration_sec: int = 30
    tiebreak_duration_sec: int = 60
    elimination_display_sec: int = 10

    # Reference client poll cadence; advertised to clients, not enforced
    poll_interval_ms: int = 1000

    # Ended games older than this are purged on the next create. None = keep forever.
    finished_game_retention_sec: Optional[int] = None

    # Pydantic v2 style (replaces deprecated inner class Config)
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )

    @property
    def cors_origins(self) -> List[str]:
        if self.extra_origin:
            return [*self.allowed_origins, self.extra_origin]
        return list(self.allowed_origins)


settings = Settings()

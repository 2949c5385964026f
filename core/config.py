from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    if not raw.lstrip("-").isdigit():
        raise RuntimeError(f"{name} must be an integer in .env")
    return int(raw)


@dataclass(slots=True)
class Settings:
    discord_token: str = ""
    youtube_api_key: str = ""
    prefix: str = ";"
    region_code: str = "KR"
    log_level: str = "INFO"

    rank_data_dir: str = "data/song_rank"
    rank_save_interval_seconds: int = 3600
    idle_disconnect_seconds: float = 60
    connect_timeout_seconds: float = 30

    history_size: int = 50
    max_play_errors: int = 3
    max_failed_recommendations: int = 3
    sample_min_duration: int = 60
    sample_max_duration: int = 480
    sample_max_rounds: int = 6
    random_count: int = 5

    search_result_limit: int = 10
    playlist_limit: int = 25
    rank_report_limit: int = 50

    @classmethod
    def from_env(cls) -> Settings:
        youtube_api_key = os.getenv("YOUTUBE_API_KEY", "").strip()
        if not youtube_api_key:
            raise RuntimeError("YOUTUBE_API_KEY is missing in .env")

        return cls(
            discord_token=os.getenv("DISCORD_TOKEN", "").strip(),
            youtube_api_key=youtube_api_key,
            prefix=os.getenv("BOT_PREFIX", ";"),
            region_code=os.getenv("YOUTUBE_REGION_CODE", "KR").strip() or "KR",
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
            rank_data_dir=os.getenv("RANK_DATA_DIR", "data/song_rank").strip() or "data/song_rank",
            rank_save_interval_seconds=max(1, _env_int("RANK_SAVE_INTERVAL_SECONDS", 3600)),
            idle_disconnect_seconds=max(0, _env_int("IDLE_DISCONNECT_SECONDS", 60)),
        )

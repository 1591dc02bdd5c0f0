"""Application settings and logging setup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    """Settings of the planner host, loaded from the environment."""

    timezone: str = "UTC"
    owner_id: str = "local-user"
    log_level: str = "INFO"

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@lru_cache()
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings(
        timezone=os.getenv("STUDY_PLANNER_TIMEZONE", "UTC"),
        owner_id=os.getenv("STUDY_PLANNER_OWNER_ID", "local-user"),
        log_level=os.getenv("STUDY_PLANNER_LOG_LEVEL", "INFO"),
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

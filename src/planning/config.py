"""Planning engine configuration loaded from environment variables."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class PlanningConfig(BaseSettings):
    """Planning configuration loaded from environment variables.

    Every field can be overridden with a ``PLANNING_`` prefixed variable
    (e.g. ``PLANNING_DATABASE_URL``). For local development, create a .env
    file in the project root. List fields are read as JSON arrays.
    """

    # Storage
    database_url: str = Field(
        default="sqlite:///data/planning.db",
        description="SQLAlchemy database URL",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # Calendar
    holiday_region: str = Field(
        default="FR",
        description="Public holiday rule set (FR, FR-ALSACE)",
    )
    school_zone: str = Field(
        default="C",
        description="School holiday zone (A, B, C)",
    )
    school_calendar_url: str | None = Field(
        default=None,
        description="Optional iCalendar feed of official school holidays",
    )
    school_calendar_pattern: str = Field(
        default="Vacances|Pont",
        description="Regex selecting closure events in the school calendar feed",
    )
    http_timeout_seconds: int = Field(
        default=30,
        description="Timeout for school calendar downloads",
    )

    # Weekly template layout
    slot_times: list[str] = Field(
        default=[
            "09:00-10:00",
            "10:00-11:00",
            "11:00-12:00",
            "14:00-15:00",
            "15:00-16:00",
        ],
        description="Time range of each slot column, slot 1 first",
    )
    morning_slots: list[int] = Field(default=[1, 2, 3])
    afternoon_slots: list[int] = Field(default=[4, 5])
    short_day: int = Field(
        default=3,
        description="Weekday (1=Monday) without a required afternoon block",
    )
    coverage_granularity: Literal["block", "slot"] = Field(
        default="block",
        description="block: one slot per required block; slot: every slot",
    )
    all_children_tokens: list[str] = Field(default=["all", "tous"])
    all_children_scope: Literal["roster", "workbook"] = Field(
        default="roster",
        description="roster: every known child; workbook: every child named in the workbook",
    )
    match_reversed_names: bool = Field(
        default=False,
        description='Also accept "last first" names in the workbook',
    )
    break_labels: list[str] = Field(
        default=["pause", "break"],
        description="Activity labels allowed without children",
    )
    include_leading_week: bool = Field(
        default=True,
        description="Schedule the partial week before the first Monday",
    )

    # Access
    privileged_roles: list[str] = Field(default=["admin", "director", "secretary"])

    # Transactions
    retry_attempts: int = Field(
        default=3,
        description="Attempts for operations failing on concurrent modification",
    )
    import_timeout_base_seconds: int = Field(default=30)
    import_timeout_per_entry_ms: int = Field(default=50)
    import_timeout_max_seconds: int = Field(default=300)

    model_config = {
        "env_prefix": "PLANNING_",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton pattern
_config: PlanningConfig | None = None


def get_config() -> PlanningConfig:
    """Get the planning configuration singleton.

    Returns:
        PlanningConfig: Planning configuration instance
    """
    global _config
    if _config is None:
        _config = PlanningConfig()
    return _config

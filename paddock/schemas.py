from pydantic import BaseModel, Field, computed_field
from typing import Optional, List
from datetime import date, datetime
from enum import Enum


# =============================================================================
# Raw upstream records (decoded straight from the racing API, never persisted)
# =============================================================================


class RunnerRecord(BaseModel):
    horse_id: str
    horse: str
    age: Optional[int] = None
    sex: Optional[str] = None
    sire: Optional[str] = None
    dam: Optional[str] = None
    owner: Optional[str] = None
    breeder: Optional[str] = None
    jockey_id: Optional[str] = None
    jockey: Optional[str] = None
    trainer_id: Optional[str] = None
    trainer: Optional[str] = None
    odds: Optional[str] = None
    weight: Optional[str] = None
    # Only present in /results payloads
    position: Optional[str] = None
    prize: Optional[str] = None
    time: Optional[str] = None
    margin: Optional[str] = None


class RaceCard(BaseModel):
    race_id: Optional[str] = None
    race_name: str
    course: str
    date: str
    race_time: Optional[str] = None
    distance: str
    going: Optional[str] = None
    race_class: Optional[str] = None
    prize: Optional[str] = None
    runners: List[RunnerRecord] = Field(default_factory=list)


class RaceResultRecord(BaseModel):
    date: str
    course: str
    distance: str
    position: str
    runners: Optional[int] = None
    going: Optional[str] = None
    race_class: Optional[str] = None
    prize: Optional[str] = None
    time: Optional[str] = None
    weight: Optional[str] = None
    odds: Optional[str] = None
    margin: Optional[str] = None


class JockeyStatRecord(BaseModel):
    jockey_id: str
    jockey: str
    wins: int
    runs: int
    win_percentage: float
    place_percentage: float
    profit_loss: float
    roi: float


class TrainerStatRecord(BaseModel):
    trainer_id: str
    trainer: str
    wins: int
    runs: int
    win_percentage: float
    place_percentage: float
    profit_loss: float
    roi: float


# =============================================================================
# Domain entities
# =============================================================================


def _percentage(part: int, total: int) -> float:
    return part / total * 100 if total > 0 else 0.0


class Horse(BaseModel):
    id: str
    name: str
    age: int = 0
    sex: str = "Unknown"
    sire: Optional[str] = None
    dam: Optional[str] = None
    trainer: str = "Unknown"
    jockey: Optional[str] = None
    owner: Optional[str] = None
    breeder: Optional[str] = None
    starts: int = 0
    wins: int = 0
    places: int = 0
    shows: int = 0
    earnings: float = 0.0
    last_raced: Optional[date] = None

    @computed_field
    @property
    def win_rate(self) -> float:
        return _percentage(self.wins, self.starts)

    @computed_field
    @property
    def in_the_money_rate(self) -> float:
        return _percentage(self.wins + self.places + self.shows, self.starts)


class Jockey(BaseModel):
    id: str
    name: str
    wins: int = 0
    places: int = 0
    shows: int = 0
    total_mounts: int = 0
    profit_loss: float = 0.0
    # The upstream only ever supplies a single ROI figure (the 30 day window)
    roi_30_days: float = 0.0
    roi_90_days: float = 0.0
    roi_1_year: float = 0.0

    @computed_field
    @property
    def win_percentage(self) -> float:
        return _percentage(self.wins, self.total_mounts)


class Trainer(BaseModel):
    id: str
    name: str
    wins: int = 0
    places: int = 0
    shows: int = 0
    total_starts: int = 0
    profit_loss: float = 0.0
    roi_30_days: float = 0.0
    roi_90_days: float = 0.0
    roi_1_year: float = 0.0

    @computed_field
    @property
    def win_percentage(self) -> float:
        return _percentage(self.wins, self.total_starts)


class RaceEntry(BaseModel):
    id: str
    race_id: str
    horse: Horse
    jockey: Jockey
    trainer: Trainer
    post_position: int = 0
    morning_line_odds: float = 0.0
    final_odds: Optional[float] = None
    finish_position: Optional[int] = None
    margin: Optional[str] = None
    final_time: Optional[float] = None


class Race(BaseModel):
    id: str
    name: str
    venue: str
    date: datetime
    race_number: int = 1
    scheduled_time: Optional[str] = None
    distance: str
    surface: str = "Dirt"
    purse: float = 0.0
    race_class: str = "Unknown"
    conditions: str = ""
    entries: List[RaceEntry] = Field(default_factory=list)
    dropped_runners: int = 0

    @computed_field
    @property
    def is_degraded(self) -> bool:
        """True when at least one runner could not be resolved and was left out."""
        return self.dropped_runners > 0


# =============================================================================
# Published fetch state
# =============================================================================


class FetchKind(str, Enum):
    RACES = "races"
    RESULTS = "results"
    HORSES = "horses"
    DETAILS = "details"
    RACE = "race"


class FetchStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    FAILURE = "failure"


class FetchState(BaseModel):
    kind: FetchKind
    status: FetchStatus = FetchStatus.IDLE
    error_message: Optional[str] = None
    last_updated: Optional[datetime] = None
    item_failures: int = 0

    model_config = {"frozen": True}

    @computed_field
    @property
    def is_loading(self) -> bool:
        return self.status == FetchStatus.LOADING


# API Response Schemas
class ApiKeyRequest(BaseModel):
    api_key: str


class StatusResponse(BaseModel):
    api_key_configured: bool
    states: List[FetchState]

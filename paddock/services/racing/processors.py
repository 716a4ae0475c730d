"""
Racing Data Processors
Transform raw racing API records into domain entities.
"""

import re
from datetime import date, datetime
from typing import List, Optional
import logging

from paddock.schemas import (
    Horse,
    Jockey,
    JockeyStatRecord,
    Race,
    RaceCard,
    RaceEntry,
    RaceResultRecord,
    RunnerRecord,
    Trainer,
    TrainerStatRecord,
)

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"

SEX_CODES = {
    "c": "Colt",
    "f": "Filly",
    "g": "Gelding",
    "m": "Mare",
    "r": "Rig",
    "h": "Horse",
}

_NUMBER = r"\d+(?:\.\d+)?"
_FRACTIONAL_ODDS = re.compile(rf"^({_NUMBER})/({_NUMBER})$")
_DECIMAL = re.compile(rf"^{_NUMBER}$")
_MINUTES_SECONDS = re.compile(rf"^(\d+):({_NUMBER})$")


def parse_odds(text: Optional[str]) -> float:
    """
    Parse an odds string into decimal odds.

    "5/2" -> 3.5 (fractional plus the stake), "3.50" -> 3.5,
    anything else -> 0.0
    """
    if not text:
        return 0.0
    text = text.strip()

    match = _FRACTIONAL_ODDS.match(text)
    if match:
        numerator, denominator = float(match.group(1)), float(match.group(2))
        if denominator == 0:
            return 0.0
        return numerator / denominator + 1.0

    if _DECIMAL.match(text):
        return float(text)

    return 0.0


def parse_time(text: Optional[str]) -> Optional[float]:
    """
    Parse a race time into seconds.

    "1:23.45" -> 83.45, "83.45" -> 83.45, anything else -> None
    """
    if not text:
        return None
    text = text.strip()

    match = _MINUTES_SECONDS.match(text)
    if match:
        return int(match.group(1)) * 60 + float(match.group(2))

    if _DECIMAL.match(text):
        return float(text)

    return None


def parse_currency(text: Optional[str]) -> float:
    """Strip currency symbols and separators: "$10,000" -> 10000.0."""
    if not text:
        return 0.0
    numeric = re.sub(r"[^0-9.]", "", text)
    try:
        return float(numeric)
    except ValueError:
        return 0.0


def parse_date(text: Optional[str]) -> Optional[date]:
    if not text:
        return None
    try:
        return datetime.strptime(text.strip(), DATE_FORMAT).date()
    except ValueError:
        return None


def parse_position(text: Optional[str]) -> Optional[int]:
    if text is None:
        return None
    text = text.strip()
    # isdigit() also accepts superscripts such as "³" that int() rejects
    return int(text) if text.isdecimal() else None


class RacingDataProcessor:
    """
    Transform and normalize racing API records.

    Every method is a pure function of its arguments: no network access,
    no stored state.
    """

    # ==================== Horses ====================

    def map_horse(self, record: RunnerRecord, history: List[RaceResultRecord]) -> Horse:
        """
        Build a Horse from its runner record and result history.

        Args:
            record: Runner record carrying identity and connections
            history: Past results of this horse (may be empty)

        Returns:
            Horse with cumulative statistics derived from history
        """
        history_dates = [d for d in (parse_date(r.date) for r in history) if d is not None]

        return Horse(
            id=record.horse_id,
            name=record.horse,
            age=record.age or 0,
            sex=self.map_sex(record.sex),
            sire=record.sire,
            dam=record.dam,
            trainer=record.trainer or "Unknown",
            jockey=record.jockey,
            owner=record.owner,
            breeder=record.breeder,
            starts=len(history),
            wins=self._count_position(history, "1"),
            places=self._count_position(history, "2"),
            shows=self._count_position(history, "3"),
            earnings=sum(parse_currency(r.prize) for r in history),
            last_raced=max(history_dates) if history_dates else None,
        )

    @staticmethod
    def _count_position(history: List[RaceResultRecord], position: str) -> int:
        return sum(1 for r in history if r.position.strip() == position)

    @staticmethod
    def map_sex(code: Optional[str]) -> str:
        if not code:
            return "Unknown"
        return SEX_CODES.get(code.strip().lower(), "Unknown")

    # ==================== Connections ====================

    def map_jockey(self, stats: JockeyStatRecord) -> Jockey:
        """
        Build a Jockey from aggregated statistics.

        Places and shows are not supplied by the upstream and stay 0.
        Win percentage is derived from wins/total_mounts.
        """
        return Jockey(
            id=stats.jockey_id,
            name=stats.jockey,
            wins=stats.wins,
            total_mounts=stats.runs,
            profit_loss=stats.profit_loss,
            roi_30_days=stats.roi,
        )

    def map_trainer(self, stats: TrainerStatRecord) -> Trainer:
        """Build a Trainer from aggregated statistics. See map_jockey."""
        return Trainer(
            id=stats.trainer_id,
            name=stats.trainer,
            wins=stats.wins,
            total_starts=stats.runs,
            profit_loss=stats.profit_loss,
            roi_30_days=stats.roi,
        )

    # ==================== Races ====================

    @staticmethod
    def race_id_for(card: RaceCard) -> str:
        if card.race_id:
            return card.race_id
        slug = "-".join(
            part for part in (card.date, card.course, card.race_time or "") if part
        )
        return re.sub(r"[^a-z0-9]+", "-", slug.lower()).strip("-")

    def map_race(self, card: RaceCard) -> Race:
        """
        Build a Race (without entries) from a race card.

        An unparseable date falls back to the current time.
        """
        parsed = parse_date(card.date)
        if parsed is None:
            logger.warning(f"Unparseable race date {card.date!r} for {card.race_name}, using current time")
            race_date = datetime.now()
        else:
            race_date = datetime.combine(parsed, datetime.min.time())

        return Race(
            id=self.race_id_for(card),
            name=card.race_name,
            venue=card.course,
            date=race_date,
            scheduled_time=card.race_time,
            distance=card.distance,
            surface=self.map_surface(card.going),
            purse=parse_currency(card.prize),
            race_class=card.race_class or "Unknown",
            conditions=card.race_name,
        )

    @staticmethod
    def map_surface(going: Optional[str]) -> str:
        if not going:
            return "Dirt"
        going = going.lower()
        if any(word in going for word in ("turf", "yielding", "soft", "firm")):
            return "Turf"
        if "all weather" in going or "synthetic" in going:
            return "Synthetic"
        return "Dirt"

    # ==================== Entries ====================

    def map_race_entry(
        self,
        result: RaceResultRecord,
        horse: Horse,
        jockey: Jockey,
        trainer: Trainer,
        race_id: str = "",
        post_position: int = 0,
    ) -> Optional[RaceEntry]:
        """
        Build a finished RaceEntry from a result record.

        Returns:
            None when the finish position is not an integer (the entry is dropped)
        """
        position = parse_position(result.position)
        if position is None:
            return None

        odds = parse_odds(result.odds)
        return RaceEntry(
            id=f"{race_id}:{horse.id}" if race_id else horse.id,
            race_id=race_id,
            horse=horse,
            jockey=jockey,
            trainer=trainer,
            post_position=post_position,
            morning_line_odds=odds,
            final_odds=odds,
            finish_position=position,
            margin=result.margin,
            final_time=parse_time(result.time),
        )

    def map_runner_entry(
        self,
        runner: RunnerRecord,
        post_position: int,
        horse: Horse,
        jockey: Jockey,
        trainer: Trainer,
        race_id: str,
    ) -> RaceEntry:
        """Build a not-yet-run RaceEntry from a race card runner."""
        return RaceEntry(
            id=f"{race_id}:{horse.id}",
            race_id=race_id,
            horse=horse,
            jockey=jockey,
            trainer=trainer,
            post_position=post_position,
            morning_line_odds=parse_odds(runner.odds),
        )

    def map_result_record(self, card: RaceCard, runner: RunnerRecord) -> RaceResultRecord:
        """Project one runner's row of a result card onto a RaceResultRecord."""
        return RaceResultRecord(
            date=card.date,
            course=card.course,
            distance=card.distance,
            position=runner.position or "",
            runners=len(card.runners),
            going=card.going,
            race_class=card.race_class,
            prize=runner.prize,
            time=runner.time,
            weight=runner.weight,
            odds=runner.odds,
            margin=runner.margin,
        )

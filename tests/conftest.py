"""
Pytest configuration and fixtures for the Paddock racing data layer.

This module provides:
- Builders for raw race card and runner records
- A scripted fake data source (latencies, failures, call counters)
- A fake wall clock and a no-op backoff sleep
- A RacingDataService wired to the fakes
"""

import os
import asyncio
from collections import Counter
from typing import Dict, List, Optional

import pytest

# Set test mode before importing app modules
os.environ["MODE"] = "TEST"

from paddock.exceptions import HttpError
from paddock.schemas import (
    JockeyStatRecord,
    RaceCard,
    RaceResultRecord,
    RunnerRecord,
    TrainerStatRecord,
)
from paddock.services.racing import CredentialStore, RacingDataService

VALID_API_KEY = "0123456789abcdef0123456789abcdef"


# ============================================================================
# Record builders
# ============================================================================


def make_runner(horse_id: str, **overrides) -> RunnerRecord:
    fields = {
        "horse_id": horse_id,
        "horse": f"Horse {horse_id}",
        "age": 4,
        "sex": "g",
        "sire": f"Sire {horse_id}",
        "dam": f"Dam {horse_id}",
        "jockey_id": f"jky-{horse_id}",
        "jockey": f"Jockey {horse_id}",
        "trainer_id": f"trn-{horse_id}",
        "trainer": f"Trainer {horse_id}",
        "odds": "5/2",
    }
    fields.update(overrides)
    return RunnerRecord(**fields)


def make_card(race_id: str, horse_ids: List[str], **overrides) -> RaceCard:
    fields = {
        "race_id": race_id,
        "race_name": f"Race {race_id}",
        "course": "Saratoga",
        "date": "2026-10-19",
        "race_time": "14:30",
        "distance": "6f",
        "going": "Good to Firm",
        "race_class": "Class 2",
        "prize": "$25,000",
        "runners": [make_runner(h) for h in horse_ids],
    }
    fields.update(overrides)
    return RaceCard(**fields)


def make_result(position: str, prize: Optional[str] = None, date: str = "2026-09-01") -> RaceResultRecord:
    return RaceResultRecord(
        date=date,
        course="Belmont",
        distance="1m",
        position=position,
        prize=prize,
        odds="3/1",
    )


# ============================================================================
# Fakes
# ============================================================================


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 1_800_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRacingSource:
    """
    Scripted stand-in for RacingDataSource.

    Attributes:
        racecards: Cards returned by list_racecards
        results: Cards returned by list_results
        histories: horse_id -> result history
        latencies: horse_id -> seconds fetch_horse_results takes
        failing_horses: horse ids whose history fetch raises HttpError(500)
        list_error: Error raised by list_racecards, if set
        list_delay: Seconds list_racecards takes
        calls: Counter of calls per method (and per horse for histories)
    """

    def __init__(self, racecards: Optional[List[RaceCard]] = None, results: Optional[List[RaceCard]] = None):
        self.racecards = racecards or []
        self.results = results or []
        self.histories: Dict[str, List[RaceResultRecord]] = {}
        self.latencies: Dict[str, float] = {}
        self.failing_horses = set()
        self.list_error: Optional[Exception] = None
        self.list_delay = 0.0
        self.calls = Counter()
        self.closed = False

    async def list_racecards(self, use_cache: bool = False) -> List[RaceCard]:
        self.calls["list_racecards"] += 1
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        if self.list_error is not None:
            raise self.list_error
        return list(self.racecards)

    async def list_results(self, use_cache: bool = False) -> List[RaceCard]:
        self.calls["list_results"] += 1
        return list(self.results)

    async def get_race(self, race_id: str) -> RaceCard:
        self.calls["get_race"] += 1
        for card in self.racecards + self.results:
            if card.race_id == race_id:
                return card
        raise HttpError(404)

    async def search_horses(self, query: str = "") -> List[RunnerRecord]:
        self.calls["search_horses"] += 1
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        needle = query.strip().lower()
        runners = [r for card in self.racecards for r in card.runners]
        return [r for r in runners if needle in r.horse.lower()]

    async def find_horse(self, horse_id: str) -> Optional[RunnerRecord]:
        self.calls["find_horse"] += 1
        for card in self.racecards:
            for runner in card.runners:
                if runner.horse_id == horse_id:
                    return runner
        return None

    async def fetch_horse_results(self, horse_id: str) -> List[RaceResultRecord]:
        self.calls[f"fetch_horse_results:{horse_id}"] += 1
        latency = self.latencies.get(horse_id, 0.0)
        if latency:
            await asyncio.sleep(latency)
        if horse_id in self.failing_horses:
            raise HttpError(500)
        return self.histories.get(horse_id, [])

    async def fetch_jockey_stats(self, jockey_id: str, name: Optional[str] = None) -> JockeyStatRecord:
        self.calls["fetch_jockey_stats"] += 1
        return JockeyStatRecord(
            jockey_id=jockey_id,
            jockey=name or jockey_id,
            wins=1,
            runs=4,
            win_percentage=25.0,
            place_percentage=50.0,
            profit_loss=-0.5,
            roi=-12.5,
        )

    async def fetch_trainer_stats(self, trainer_id: str, name: Optional[str] = None) -> TrainerStatRecord:
        self.calls["fetch_trainer_stats"] += 1
        return TrainerStatRecord(
            trainer_id=trainer_id,
            trainer=name or trainer_id,
            wins=2,
            runs=10,
            win_percentage=20.0,
            place_percentage=40.0,
            profit_loss=3.0,
            roi=30.0,
        )

    async def close(self) -> None:
        self.closed = True


async def no_sleep(delay: float) -> None:
    """Backoff sleep that returns immediately."""
    return None


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_source() -> FakeRacingSource:
    """Three races of 3, 5 and 2 runners."""
    return FakeRacingSource(
        racecards=[
            make_card("r1", ["a1", "a2", "a3"]),
            make_card("r2", ["b1", "b2", "b3", "b4", "b5"], race_time="15:05"),
            make_card("r3", ["c1", "c2"], race_time="15:40", going="Standard (All Weather)"),
        ],
        results=[
            make_card(
                "res1",
                ["a1", "b1", "c1"],
                date="2026-09-01",
                runners=[
                    make_runner("a1", position="1", prize="$10,000", time="1:10.50"),
                    make_runner("b1", position="2", prize="$2,000", time="1:10.90"),
                    make_runner("c1", position="PU"),
                ],
            ),
        ],
    )


@pytest.fixture
def credentials() -> CredentialStore:
    return CredentialStore(VALID_API_KEY)


@pytest.fixture
def service(fake_source: FakeRacingSource, credentials: CredentialStore, clock: FakeClock) -> RacingDataService:
    return RacingDataService(
        source=fake_source,
        credentials=credentials,
        cache_ttl=300,
        max_attempts=3,
        base_delay=0.0,
        max_concurrency=4,
        sleep=no_sleep,
        clock=clock,
    )

"""
Racing Data Source
Logical endpoints of the racing API. The upstream only serves race cards,
single races and results, so search, horse history and jockey/trainer
statistics are synthesized here by filtering and aggregating those lists.
"""
from typing import Callable, Iterable, List, Optional, Tuple
import logging

from paddock.core.config import settings
from paddock.schemas import (
    JockeyStatRecord,
    RaceCard,
    RaceResultRecord,
    RunnerRecord,
    TrainerStatRecord,
)
from .cache import InMemoryCache
from .client import RacingHTTPClient
from .processors import RacingDataProcessor, parse_odds

logger = logging.getLogger(__name__)

RACECARDS_ENDPOINT = "/racecards"
RESULTS_ENDPOINT = "/results"


def _matches(value: Optional[str], query: str) -> bool:
    return value is not None and query in value.lower()


def _aggregate(rows: List[RunnerRecord]) -> Tuple[int, int, float, float, float, float]:
    """
    Level-stakes statistics over result rows, 1 unit staked per run.

    Returns:
        (runs, wins, win_percentage, place_percentage, profit_loss, roi)
    """
    runs = len(rows)
    if runs == 0:
        return 0, 0, 0.0, 0.0, 0.0, 0.0

    wins = 0
    placed = 0
    profit_loss = 0.0
    for row in rows:
        position = (row.position or "").strip()
        if position in ("1", "2", "3"):
            placed += 1
        if position == "1":
            wins += 1
            decimal_odds = parse_odds(row.odds)
            profit_loss += decimal_odds - 1.0 if decimal_odds > 0 else 0.0
        else:
            profit_loss -= 1.0

    return (
        runs,
        wins,
        wins / runs * 100,
        placed / runs * 100,
        round(profit_loss, 2),
        round(profit_loss / runs * 100, 2),
    )


class RacingDataSource:
    """
    One method per logical endpoint.

    Top-level list calls always hit the network. Lookups used by per-runner
    sub-fetches share a short-lived response cache, so a burst of concurrent
    sub-fetches costs one upstream request per endpoint.
    """

    def __init__(
        self,
        client: RacingHTTPClient,
        processor: Optional[RacingDataProcessor] = None,
        response_cache: Optional[InMemoryCache] = None,
        response_ttl: Optional[float] = None,
    ) -> None:
        """
        Initialize data source.

        Args:
            client: HTTP client used for every upstream call
            processor: Mapper used to project result rows
            response_cache: Cache for decoded upstream responses
            response_ttl: Seconds a decoded response is reused (0 disables reuse)
        """
        self.client = client
        self.processor = processor or RacingDataProcessor()
        self.response_cache = response_cache or InMemoryCache()
        self.response_ttl = (
            settings.RESPONSE_CACHE_TTL_SECONDS if response_ttl is None else response_ttl
        )

    async def _get_cards(self, endpoint: str, use_cache: bool) -> List[RaceCard]:
        async def fetch() -> List[RaceCard]:
            return await self.client.get(endpoint, List[RaceCard])

        if not use_cache or self.response_ttl <= 0:
            cards = await fetch()
            if self.response_ttl > 0:
                await self.response_cache.set(endpoint, cards, self.response_ttl)
            return cards

        return await self.response_cache.get_or_set(endpoint, fetch, self.response_ttl)

    # ==================== Upstream endpoints ====================

    async def list_racecards(self, use_cache: bool = False) -> List[RaceCard]:
        """Fetch today's race cards (GET /racecards)."""
        return await self._get_cards(RACECARDS_ENDPOINT, use_cache)

    async def list_results(self, use_cache: bool = False) -> List[RaceCard]:
        """Fetch historical results (GET /results)."""
        return await self._get_cards(RESULTS_ENDPOINT, use_cache)

    async def get_race(self, race_id: str) -> RaceCard:
        """Fetch a single race card by id (GET /race/{id})."""
        return await self.client.get(f"/race/{race_id}", RaceCard)

    # ==================== Synthesized endpoints ====================

    async def search_horses(self, query: str = "") -> List[RunnerRecord]:
        """
        Case-insensitive substring search over today's runners.

        Matches horse name, jockey, trainer, sire and dam. An empty query
        returns every runner. Runners are de-duplicated by horse id,
        keeping race card order.
        """
        cards = await self.list_racecards()
        needle = query.strip().lower()

        seen = set()
        matches = []
        for runner in (r for card in cards for r in card.runners):
            if runner.horse_id in seen:
                continue
            if needle and not any(
                _matches(value, needle)
                for value in (runner.horse, runner.jockey, runner.trainer, runner.sire, runner.dam)
            ):
                continue
            seen.add(runner.horse_id)
            matches.append(runner)

        logger.debug(f"Horse search {query!r} matched {len(matches)} runners")
        return matches

    async def find_horse(self, horse_id: str) -> Optional[RunnerRecord]:
        """Find a runner by horse id or exact name. None when absent."""
        cards = await self.list_racecards(use_cache=True)
        for card in cards:
            for runner in card.runners:
                if runner.horse_id == horse_id or runner.horse == horse_id:
                    return runner
        return None

    async def fetch_horse_results(self, horse_id: str) -> List[RaceResultRecord]:
        """Every result row of the horse, one RaceResultRecord per appearance."""
        results = await self.list_results(use_cache=True)
        return [
            self.processor.map_result_record(card, runner)
            for card in results
            for runner in card.runners
            if runner.horse_id == horse_id
        ]

    async def fetch_jockey_stats(self, jockey_id: str, name: Optional[str] = None) -> JockeyStatRecord:
        """Aggregate a jockey's result rows. No rows yields zero statistics."""
        rows = await self._rows_for(lambda r: r.jockey_id == jockey_id or r.jockey == jockey_id)
        runs, wins, win_pct, place_pct, profit_loss, roi = _aggregate(rows)
        return JockeyStatRecord(
            jockey_id=jockey_id,
            jockey=next((r.jockey for r in rows if r.jockey), name or jockey_id),
            wins=wins,
            runs=runs,
            win_percentage=win_pct,
            place_percentage=place_pct,
            profit_loss=profit_loss,
            roi=roi,
        )

    async def fetch_trainer_stats(self, trainer_id: str, name: Optional[str] = None) -> TrainerStatRecord:
        """Aggregate a trainer's result rows. No rows yields zero statistics."""
        rows = await self._rows_for(lambda r: r.trainer_id == trainer_id or r.trainer == trainer_id)
        runs, wins, win_pct, place_pct, profit_loss, roi = _aggregate(rows)
        return TrainerStatRecord(
            trainer_id=trainer_id,
            trainer=next((r.trainer for r in rows if r.trainer), name or trainer_id),
            wins=wins,
            runs=runs,
            win_percentage=win_pct,
            place_percentage=place_pct,
            profit_loss=profit_loss,
            roi=roi,
        )

    async def _rows_for(self, predicate: Callable[[RunnerRecord], bool]) -> List[RunnerRecord]:
        results = await self.list_results(use_cache=True)
        rows: Iterable[RunnerRecord] = (r for card in results for r in card.runners)
        return [r for r in rows if predicate(r)]

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.close()

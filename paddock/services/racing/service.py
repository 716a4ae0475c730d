"""
Racing Data Service
Main orchestrator for the racing API using modular components.
"""
import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Sequence, Tuple
import logging

from pydantic import BaseModel

from paddock.core.config import settings
from paddock.exceptions import AppException, FetchCancelledError, HttpError, UnauthorizedError
from paddock.schemas import (
    FetchKind,
    FetchState,
    FetchStatus,
    Horse,
    Jockey,
    Race,
    RaceCard,
    RaceEntry,
    RunnerRecord,
    Trainer,
)
from .cache import InMemoryCache
from .client import RacingHTTPClient
from .credentials import CredentialStore
from .processors import RacingDataProcessor
from .repository import RacingRepository
from .retry import with_retry
from .source import RacingDataSource

logger = logging.getLogger(__name__)

StateListener = Callable[[FetchState], None]

# Marks a fan-out item whose sub-fetch failed and was left out
_FAILED = object()

UNAUTHORIZED_MESSAGE = "Your API key is invalid or your session has expired. Please update it in Settings."


class RacingDataService:
    """
    Racing data orchestrator.

    Decides between cache and network, runs rate-limited retried
    sub-fetches with bounded concurrency, reassembles results in input
    order, absorbs per-item failures and publishes per-kind fetch state:
    - RacingDataSource: upstream endpoints (synthesized where the API has none)
    - InMemoryCache: freshness-window cache per query signature
    - RacingDataProcessor: raw record to domain entity mapping
    - RacingRepository: persistence collaborator
    """

    RACES_CACHE_KEY = ("races",)
    RESULTS_CACHE_KEY = ("results",)

    def __init__(
        self,
        source: Optional[RacingDataSource] = None,
        credentials: Optional[CredentialStore] = None,
        processor: Optional[RacingDataProcessor] = None,
        cache: Optional[InMemoryCache] = None,
        repository: Optional[RacingRepository] = None,
        cache_ttl: Optional[float] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize racing data service with modular components.

        Args:
            source: Upstream endpoints (default: HTTP-backed source from settings)
            credentials: API key source, invalidated on unauthorized responses
            processor: Mapper
            cache: Result cache (default: in-memory cache on ``clock``)
            repository: Persistence collaborator receiving mapped entities
            cache_ttl: Freshness window in seconds (default: settings.CACHE_TTL_SECONDS)
            max_attempts: Attempts per upstream call (default: settings.RETRY_MAX_ATTEMPTS)
            base_delay: Retry base delay in seconds (default: settings.RETRY_BASE_DELAY_SECONDS)
            max_concurrency: Concurrent runner sub-fetches (default: settings.MAX_CONCURRENT_FETCHES)
            sleep: Coroutine function used for retry backoff
            clock: Wall clock used for freshness and last_updated
        """
        self.credentials = credentials or CredentialStore(settings.RACING_API_KEY)
        self.processor = processor or RacingDataProcessor()
        self.source = source or RacingDataSource(
            RacingHTTPClient(self.credentials), processor=self.processor
        )
        self.cache = cache or InMemoryCache(clock=clock)
        self.repository = repository or RacingRepository()

        self.cache_ttl = settings.CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl
        self.max_attempts = max_attempts or settings.RETRY_MAX_ATTEMPTS
        self.base_delay = settings.RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.MAX_CONCURRENT_FETCHES)
        self._sleep = sleep
        self._clock = clock

        # Published state: written only through _publish
        self._states: Dict[FetchKind, FetchState] = {kind: FetchState(kind=kind) for kind in FetchKind}
        self._state_lock = asyncio.Lock()
        self._listeners: List[StateListener] = []
        self._in_flight: Dict[FetchKind, Tuple[Hashable, asyncio.Task]] = {}

    # ==================== Published state ====================

    def state(self, kind: FetchKind) -> FetchState:
        """Snapshot of the fetch state of one operation kind."""
        return self._states[kind]

    def states(self) -> List[FetchState]:
        return [self._states[kind] for kind in FetchKind]

    @property
    def api_key_configured(self) -> bool:
        return self.credentials.is_configured

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener called with every new state snapshot.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _publish(self, kind: FetchKind, **changes: Any) -> FetchState:
        async with self._state_lock:
            state = self._states[kind].model_copy(update=changes)
            self._states[kind] = state
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception(f"State listener failed for {kind.value}")
        return state

    @staticmethod
    def _error_message(error: Exception) -> str:
        if isinstance(error, UnauthorizedError):
            return UNAUTHORIZED_MESSAGE
        if isinstance(error, AppException):
            return error.message
        return f"An unexpected error occurred: {str(error)}"

    # ==================== Single-flight execution ====================

    async def _run_exclusive(
        self,
        kind: FetchKind,
        signature: Hashable,
        loader: Callable[[], Awaitable[Tuple[Any, int]]],
        force_refresh: bool = False,
    ) -> Any:
        """
        Run loader as the only network sequence of its kind.

        A call with the same signature joins the running sequence, and a
        forced refresh of the same signature cancels and replaces it. A call
        with a different signature waits for the running sequence to finish
        and then starts its own, so every caller gets its own result.
        """
        while True:
            current = self._in_flight.get(kind)
            if current is None or current[1].done():
                break
            current_signature, task = current
            if current_signature != signature:
                logger.info(f"Waiting for in-flight {kind.value} fetch of another query")
                await asyncio.wait([task])
                continue
            if not force_refresh:
                logger.info(f"Joining in-flight {kind.value} fetch")
                return await self._await_in_flight(kind, signature, task)
            logger.info(f"Cancelling stale in-flight {kind.value} fetch")
            task.cancel()
            break

        task = asyncio.create_task(self._tracked(kind, loader))
        self._in_flight[kind] = (signature, task)
        return await self._await_in_flight(kind, signature, task)

    async def _await_in_flight(self, kind: FetchKind, signature: Hashable, task: asyncio.Task) -> Any:
        while True:
            try:
                return self._snapshot(await asyncio.shield(task))
            except asyncio.CancelledError:
                if not task.cancelled():
                    # The caller itself was cancelled
                    raise
                replacement = self._in_flight.get(kind)
                if replacement is None or replacement[1] is task or replacement[0] != signature:
                    raise FetchCancelledError(kind.value) from None
                # Superseded by a forced refresh of the same query
                task = replacement[1]

    @staticmethod
    def _snapshot(value: Any) -> Any:
        """Deep copy handed to callers, so changes never reach the cache or repository."""
        if isinstance(value, list):
            return [item.model_copy(deep=True) for item in value]
        if isinstance(value, BaseModel):
            return value.model_copy(deep=True)
        return value

    async def _tracked(
        self, kind: FetchKind, loader: Callable[[], Awaitable[Tuple[Any, int]]]
    ) -> Any:
        """Drive the state machine IDLE -> LOADING -> SUCCESS|FAILURE -> IDLE around loader."""
        await self._publish(kind, status=FetchStatus.LOADING)
        try:
            result, item_failures = await loader()
        except asyncio.CancelledError:
            logger.info(f"{kind.value} fetch cancelled")
            raise
        except Exception as e:
            if isinstance(e, UnauthorizedError):
                self.credentials.invalidate()
            message = self._error_message(e)
            logger.error(f"Fetching {kind.value} failed: {message}")
            await self._publish(kind, status=FetchStatus.FAILURE, error_message=message)
            await self._publish(kind, status=FetchStatus.IDLE)
            raise
        finally:
            current = self._in_flight.get(kind)
            if current is not None and current[1] is asyncio.current_task():
                del self._in_flight[kind]

        await self._publish(
            kind,
            status=FetchStatus.SUCCESS,
            error_message=None,
            last_updated=datetime.fromtimestamp(self._clock()),
            item_failures=item_failures,
        )
        await self._publish(kind, status=FetchStatus.IDLE)
        return result

    async def _retrying(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        return await with_retry(
            operation,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            sleep=self._sleep,
        )

    # ==================== Fan-out / fan-in ====================

    @staticmethod
    async def _fan_out(
        items: Sequence[Any], worker: Callable[[int, Any], Awaitable[Any]]
    ) -> List[Any]:
        """
        Run worker(index, item) concurrently for every item.

        Outcomes are tagged with their origin index as they complete and
        sorted by it once all have settled.
        """
        async def tagged(index: int, item: Any) -> Tuple[int, Any]:
            return index, await worker(index, item)

        tasks = [asyncio.ensure_future(tagged(i, item)) for i, item in enumerate(items)]
        try:
            settled = [await next_done for next_done in asyncio.as_completed(tasks)]
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        settled.sort(key=lambda pair: pair[0])
        return [outcome for _, outcome in settled]

    def _absorb(self, error: Exception, what: str) -> object:
        """Log and swallow a per-item failure, returning the failure marker."""
        if isinstance(error, UnauthorizedError):
            self.credentials.invalidate()
        logger.warning(f"Dropping {what}: {self._error_message(error)}")
        return _FAILED

    async def _resolve_jockey(self, runner: RunnerRecord) -> Jockey:
        jockey_id = runner.jockey_id or runner.jockey
        if not jockey_id:
            return Jockey(id="unknown", name="Unknown")
        stats = await self._retrying(
            lambda: self.source.fetch_jockey_stats(jockey_id, runner.jockey)
        )
        return self.processor.map_jockey(stats)

    async def _resolve_trainer(self, runner: RunnerRecord) -> Trainer:
        trainer_id = runner.trainer_id or runner.trainer
        if not trainer_id:
            return Trainer(id="unknown", name="Unknown")
        stats = await self._retrying(
            lambda: self.source.fetch_trainer_stats(trainer_id, runner.trainer)
        )
        return self.processor.map_trainer(stats)

    async def _resolve_runner(
        self, card: RaceCard, race_id: str, index: int, runner: RunnerRecord, finished: bool
    ) -> Any:
        """
        Fetch history, jockey and trainer stats of one runner and build its entry.

        Returns:
            RaceEntry, None when a finished runner has no integer position,
            or _FAILED when a sub-fetch or the mapping of its row failed
        """
        try:
            async with self._semaphore:
                history = await self._retrying(
                    lambda: self.source.fetch_horse_results(runner.horse_id)
                )
                jockey = await self._resolve_jockey(runner)
                trainer = await self._resolve_trainer(runner)

            horse = self.processor.map_horse(runner, history)
            if finished:
                return self.processor.map_race_entry(
                    self.processor.map_result_record(card, runner),
                    horse,
                    jockey,
                    trainer,
                    race_id=race_id,
                    post_position=index + 1,
                )
            return self.processor.map_runner_entry(
                runner, index + 1, horse, jockey, trainer, race_id
            )
        except Exception as e:
            return self._absorb(e, f"runner {runner.horse_id} of race {race_id}")

    async def _build_race(self, card: RaceCard, finished: bool) -> Tuple[Race, int]:
        race = self.processor.map_race(card)

        async def worker(index: int, runner: RunnerRecord) -> Any:
            return await self._resolve_runner(card, race.id, index, runner, finished)

        outcomes = await self._fan_out(card.runners, worker)
        race.entries = [o for o in outcomes if isinstance(o, RaceEntry)]
        race.dropped_runners = sum(1 for o in outcomes if o is _FAILED)
        if race.dropped_runners:
            logger.warning(
                f"Race {race.id} published with {len(race.entries)} entries, "
                f"{race.dropped_runners} runners dropped"
            )
        return race, race.dropped_runners

    async def _build_races(self, cards: List[RaceCard], finished: bool) -> Tuple[List[Race], int]:
        async def worker(_: int, card: RaceCard) -> Tuple[Race, int]:
            return await self._build_race(card, finished)

        built = await self._fan_out(cards, worker)
        races = [race for race, _ in built]
        return races, sum(dropped for _, dropped in built)

    # ==================== Races ====================

    async def fetch_races(self, force_refresh: bool = False) -> List[Race]:
        """
        Fetch today's races with entries, jockey and trainer statistics.

        Args:
            force_refresh: If True, bypasses the cache

        Returns:
            Races in race card order, entries in runner order

        Raises:
            AppException: If the race card list cannot be fetched
        """
        if not force_refresh:
            cached = await self.cache.get(self.RACES_CACHE_KEY)
            if cached is not None:
                logger.info("Using cached races")
                return self._snapshot(cached)

        return await self._run_exclusive(
            FetchKind.RACES, self.RACES_CACHE_KEY, self._load_races, force_refresh
        )

    async def _load_races(self) -> Tuple[List[Race], int]:
        cards = await self._retrying(lambda: self.source.list_racecards())
        races, failures = await self._build_races(cards, finished=False)

        await self.cache.set(self.RACES_CACHE_KEY, races, self.cache_ttl)
        await self.repository.save_races(races)
        logger.info(f"Successfully fetched {len(races)} races ({failures} runners dropped)")
        return races, failures

    async def fetch_results(self, force_refresh: bool = False) -> List[Race]:
        """
        Fetch historical results as races with finished entries.

        Runners without an integer finish position are left out.
        """
        if not force_refresh:
            cached = await self.cache.get(self.RESULTS_CACHE_KEY)
            if cached is not None:
                logger.info("Using cached results")
                return self._snapshot(cached)

        return await self._run_exclusive(
            FetchKind.RESULTS, self.RESULTS_CACHE_KEY, self._load_results, force_refresh
        )

    async def _load_results(self) -> Tuple[List[Race], int]:
        cards = await self._retrying(lambda: self.source.list_results())
        races, failures = await self._build_races(cards, finished=True)

        await self.cache.set(self.RESULTS_CACHE_KEY, races, self.cache_ttl)
        await self.repository.save_races(races)
        logger.info(f"Successfully fetched {len(races)} results")
        return races, failures

    async def fetch_race(self, race_id: str) -> Optional[Race]:
        """
        Fetch a single race by id.

        Returns:
            The race, or None if the upstream does not know it
        """
        return await self._run_exclusive(
            FetchKind.RACE, ("race", race_id), lambda: self._load_race(race_id)
        )

    async def _load_race(self, race_id: str) -> Tuple[Optional[Race], int]:
        try:
            card = await self._retrying(lambda: self.source.get_race(race_id))
        except HttpError as e:
            if e.code == 404:
                logger.info(f"Race {race_id} not found")
                return None, 0
            raise

        finished = any(runner.position for runner in card.runners)
        race, failures = await self._build_race(card, finished)
        await self.repository.save_races([race])
        return race, failures

    async def refresh_if_stale(self, max_age_seconds: float) -> Optional[List[Race]]:
        """
        Refresh races in the background when the last success is too old.

        Does nothing before the first successful fetch.
        """
        last_updated = self._states[FetchKind.RACES].last_updated
        if last_updated is None:
            return None
        age = self._clock() - last_updated.timestamp()
        if age <= max_age_seconds:
            logger.debug("Skipping background refresh - data is still fresh")
            return None

        logger.info("Performing background refresh")
        return await self.fetch_races(force_refresh=True)

    # ==================== Horses ====================

    async def fetch_horses(
        self, query: str = "", limit: Optional[int] = None, force_refresh: bool = False
    ) -> List[Horse]:
        """
        Search horses running today and resolve their result history.

        Args:
            query: Case-insensitive filter over name, jockey, trainer, sire, dam
            limit: Maximum number of horses (default: settings.HORSE_SEARCH_LIMIT)
            force_refresh: If True, bypasses the cache

        Returns:
            Matching horses in race card order; horses whose history could
            not be fetched are left out
        """
        limit = settings.HORSE_SEARCH_LIMIT if limit is None else limit
        signature = ("horses", query.strip().lower(), limit)

        if not force_refresh:
            cached = await self.cache.get(signature)
            if cached is not None:
                logger.info(f"Using cached horses for {query!r}")
                return self._snapshot(cached)

        return await self._run_exclusive(
            FetchKind.HORSES,
            signature,
            lambda: self._load_horses(query, limit, signature),
            force_refresh,
        )

    async def _load_horses(
        self, query: str, limit: int, signature: Hashable
    ) -> Tuple[List[Horse], int]:
        runners = await self._retrying(lambda: self.source.search_horses(query))
        runners = runners[:limit]

        async def worker(_: int, runner: RunnerRecord) -> Any:
            try:
                async with self._semaphore:
                    history = await self._retrying(
                        lambda: self.source.fetch_horse_results(runner.horse_id)
                    )
                return self.processor.map_horse(runner, history)
            except Exception as e:
                return self._absorb(e, f"horse {runner.horse_id}")

        outcomes = await self._fan_out(runners, worker)
        horses = [o for o in outcomes if isinstance(o, Horse)]
        failures = len(outcomes) - len(horses)

        await self.cache.set(signature, horses, self.cache_ttl)
        await self.repository.save_horses(horses)
        logger.info(f"Successfully fetched {len(horses)} horses")
        return horses, failures

    async def fetch_horse_details(self, horse_id: str) -> Optional[Horse]:
        """
        Fetch one horse with its full result history.

        Returns:
            The horse, or None when no runner matches horse_id
        """
        return await self._run_exclusive(
            FetchKind.DETAILS, ("details", horse_id), lambda: self._load_horse_details(horse_id)
        )

    async def _load_horse_details(self, horse_id: str) -> Tuple[Optional[Horse], int]:
        runner = await self._retrying(lambda: self.source.find_horse(horse_id))
        if runner is None:
            logger.info(f"No horse found for {horse_id}")
            return None, 0

        history = await self._retrying(lambda: self.source.fetch_horse_results(runner.horse_id))
        horse = self.processor.map_horse(runner, history)
        await self.repository.save_horses([horse])
        logger.info(f"Fetched details for horse: {horse.name}")
        return horse, 0

    # ==================== Configuration ====================

    async def configure_api_key(self, api_key: str) -> None:
        """
        Store a new API key and clear error messages.

        Raises:
            ValidationError: If the key format is invalid
        """
        self.credentials.set_api_key(api_key)
        for kind in FetchKind:
            await self._publish(kind, error_message=None)

    async def clear_cache(self) -> None:
        """Drop every cached result."""
        await self.cache.clear()

    async def close(self) -> None:
        """
        Cancel in-flight fetches and close the data source.

        Cancelled kinds are published as IDLE; their waiting callers get
        FetchCancelledError.
        """
        in_flight = list(self._in_flight.items())
        self._in_flight.clear()
        for _, (_, task) in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*(task for _, (_, task) in in_flight), return_exceptions=True)
        for kind, _ in in_flight:
            logger.info(f"{kind.value} fetch cancelled on close")
            await self._publish(kind, status=FetchStatus.IDLE)
        await self.source.close()

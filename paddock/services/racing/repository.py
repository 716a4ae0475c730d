"""
Racing Repository Pattern
In-memory persistence collaborator for mapped racing entities.
"""
import asyncio
from typing import Dict, List, Optional
import logging

from paddock.schemas import Horse, Race, RaceEntry

logger = logging.getLogger(__name__)


class RacingRepository:
    """
    Repository for racing domain entities.

    Implements Repository Pattern to separate storage from fetch
    orchestration. Only mapped domain entities are stored; a Race owns its
    entries, so deleting a race deletes them with it.
    """

    def __init__(self) -> None:
        self._races: Dict[str, Race] = {}
        self._horses: Dict[str, Horse] = {}
        self._lock = asyncio.Lock()

    async def save_races(self, races: List[Race]) -> Dict:
        """
        Upsert races (with their entries) and the horses they reference.

        Args:
            races: Mapped races

        Returns:
            Dictionary with save counts
        """
        async with self._lock:
            for race in races:
                self._races[race.id] = race
                for entry in race.entries:
                    self._horses[entry.horse.id] = entry.horse

        entries = sum(len(r.entries) for r in races)
        logger.debug(f"Saved {len(races)} races with {entries} entries")
        return {"status": "success", "races": len(races), "entries": entries}

    async def save_horses(self, horses: List[Horse]) -> Dict:
        """Upsert horses by id."""
        async with self._lock:
            for horse in horses:
                self._horses[horse.id] = horse
        return {"status": "success", "horses": len(horses)}

    async def get_race(self, race_id: str) -> Optional[Race]:
        async with self._lock:
            return self._races.get(race_id)

    async def get_horse(self, horse_id: str) -> Optional[Horse]:
        async with self._lock:
            return self._horses.get(horse_id)

    async def list_races(self) -> List[Race]:
        async with self._lock:
            return list(self._races.values())

    async def entries_for_horse(self, horse_id: str) -> List[RaceEntry]:
        """Entries of a horse across all stored races."""
        async with self._lock:
            return [
                entry
                for race in self._races.values()
                for entry in race.entries
                if entry.horse.id == horse_id
            ]

    async def delete_race(self, race_id: str) -> bool:
        """
        Delete a race and, with it, every entry it owns.

        Horses, jockeys and trainers referenced by the entries are kept.

        Returns:
            True if a race was deleted
        """
        async with self._lock:
            race = self._races.pop(race_id, None)
        if race is None:
            return False
        logger.info(f"Deleted race {race_id} and {len(race.entries)} entries")
        return True

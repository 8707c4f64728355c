"""In-process cache of computed slots, keyed by doctor, hospital and date."""

import logging
from datetime import date
from threading import Lock

from medibook.core import config
from medibook.scheduling.slots import Slot

logger = logging.getLogger(__name__)

SlotCacheKey = tuple[int, int | None, date]


class SlotCache:
    """Holds slot lists until a booking, cancellation or availability edit invalidates them.

    Only dates after ``today`` are stored: today's slots depend on the clock.
    Each invalidation bumps the doctor's generation; a list computed under an
    older generation is never stored. At most ``max_entries`` lists are kept,
    oldest evicted first.
    """

    def __init__(self, enabled: bool = True, max_entries: int = 5000) -> None:
        self.enabled = enabled
        self.max_entries = max_entries
        self._entries: dict[SlotCacheKey, list[Slot]] = {}
        self._generations: dict[int, int] = {}
        self._lock = Lock()

    def generation(self, doctor_id: int) -> int:
        with self._lock:
            return self._generations.get(doctor_id, 0)

    def get(self, key: SlotCacheKey, today: date) -> list[Slot] | None:
        if not self.enabled or key[2] <= today:
            return None
        with self._lock:
            slots = self._entries.get(key)
        return list(slots) if slots is not None else None

    def set(self, key: SlotCacheKey, slots: list[Slot], today: date, generation: int | None = None) -> bool:
        if not self.enabled or key[2] <= today:
            return False
        with self._lock:
            if generation is not None and generation != self._generations.get(key[0], 0):
                logger.debug('Discarded stale slot list for doctor %s on %s', key[0], key[2])
                return False

            for expired in [entry for entry in self._entries if entry[2] <= today]:
                del self._entries[expired]

            self._entries.pop(key, None)
            while self._entries and len(self._entries) >= self.max_entries:
                del self._entries[next(iter(self._entries))]
            self._entries[key] = list(slots)
        return True

    def _bump(self, doctor_id: int) -> None:
        self._generations[doctor_id] = self._generations.get(doctor_id, 0) + 1

    def invalidate_doctor(self, doctor_id: int) -> None:
        with self._lock:
            self._bump(doctor_id)
            stale = [key for key in self._entries if key[0] == doctor_id]
            for key in stale:
                del self._entries[key]
        logger.debug('Invalidated %d cached slot lists for doctor %s', len(stale), doctor_id)

    def invalidate_day(self, doctor_id: int, target_date: date) -> None:
        with self._lock:
            self._bump(doctor_id)
            stale = [key for key in self._entries if key[0] == doctor_id and key[2] == target_date]
            for key in stale:
                del self._entries[key]
        logger.debug('Invalidated %d cached slot lists for doctor %s on %s', len(stale), doctor_id, target_date)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generations.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


slot_cache = SlotCache(enabled=config.SLOT_CACHE_ENABLED, max_entries=config.SLOT_CACHE_MAX_ENTRIES)

from datetime import date, time

from medibook.scheduling.cache import SlotCache
from medibook.scheduling.slots import Slot

TODAY = date(2026, 1, 5)
TOMORROW = date(2026, 1, 6)
SLOTS = [Slot(start_time=time(9, 0), end_time=time(9, 30), is_available=True)]


def test_cache_returns_stored_slots_for_future_dates() -> None:
    cache = SlotCache()
    cache.set((1, None, TOMORROW), SLOTS, today=TODAY)

    assert cache.get((1, None, TOMORROW), today=TODAY) == SLOTS
    assert cache.get((1, 2, TOMORROW), today=TODAY) is None


def test_cache_never_stores_today_or_past_dates() -> None:
    cache = SlotCache()
    cache.set((1, None, TODAY), SLOTS, today=TODAY)
    cache.set((1, None, date(2026, 1, 1)), SLOTS, today=TODAY)

    assert len(cache) == 0
    assert cache.get((1, None, TODAY), today=TODAY) is None


def test_entry_expires_once_its_date_becomes_today() -> None:
    cache = SlotCache()
    cache.set((1, None, TOMORROW), SLOTS, today=TODAY)

    assert cache.get((1, None, TOMORROW), today=TOMORROW) is None


def test_returned_list_is_a_copy() -> None:
    cache = SlotCache()
    cache.set((1, None, TOMORROW), SLOTS, today=TODAY)

    cache.get((1, None, TOMORROW), today=TODAY).clear()

    assert cache.get((1, None, TOMORROW), today=TODAY) == SLOTS


def test_invalidate_day_drops_every_hospital_for_that_date_only() -> None:
    cache = SlotCache()
    later = date(2026, 1, 7)
    cache.set((1, None, TOMORROW), SLOTS, today=TODAY)
    cache.set((1, 3, TOMORROW), SLOTS, today=TODAY)
    cache.set((1, 3, later), SLOTS, today=TODAY)
    cache.set((2, 3, TOMORROW), SLOTS, today=TODAY)

    cache.invalidate_day(1, TOMORROW)

    assert cache.get((1, None, TOMORROW), today=TODAY) is None
    assert cache.get((1, 3, TOMORROW), today=TODAY) is None
    assert cache.get((1, 3, later), today=TODAY) == SLOTS
    assert cache.get((2, 3, TOMORROW), today=TODAY) == SLOTS


def test_invalidate_doctor_drops_all_of_that_doctors_entries() -> None:
    cache = SlotCache()
    cache.set((1, None, TOMORROW), SLOTS, today=TODAY)
    cache.set((1, 3, date(2026, 1, 9)), SLOTS, today=TODAY)
    cache.set((2, None, TOMORROW), SLOTS, today=TODAY)

    cache.invalidate_doctor(1)

    assert len(cache) == 1
    assert cache.get((2, None, TOMORROW), today=TODAY) == SLOTS


def test_disabled_cache_stores_nothing() -> None:
    cache = SlotCache(enabled=False)
    cache.set((1, None, TOMORROW), SLOTS, today=TODAY)

    assert cache.get((1, None, TOMORROW), today=TODAY) is None
    assert len(cache) == 0


def test_set_discards_list_computed_before_an_invalidation() -> None:
    cache = SlotCache()
    generation = cache.generation(1)

    cache.invalidate_day(1, TOMORROW)

    assert cache.set((1, None, TOMORROW), SLOTS, today=TODAY, generation=generation) is False
    assert cache.get((1, None, TOMORROW), today=TODAY) is None
    assert cache.set((1, None, TOMORROW), SLOTS, today=TODAY, generation=cache.generation(1)) is True


def test_invalidating_one_doctor_keeps_other_doctors_generation() -> None:
    cache = SlotCache()
    generation = cache.generation(2)

    cache.invalidate_doctor(1)

    assert cache.set((2, None, TOMORROW), SLOTS, today=TODAY, generation=generation) is True


def test_set_prunes_entries_whose_date_has_arrived() -> None:
    cache = SlotCache()
    later = date(2026, 1, 7)
    cache.set((1, None, TOMORROW), SLOTS, today=TODAY)
    cache.set((2, None, TOMORROW), SLOTS, today=TODAY)

    cache.set((1, None, later), SLOTS, today=TOMORROW)

    assert len(cache) == 1
    assert cache.get((1, None, later), today=TOMORROW) == SLOTS


def test_set_evicts_oldest_entry_beyond_max_entries() -> None:
    cache = SlotCache(max_entries=2)
    cache.set((1, None, TOMORROW), SLOTS, today=TODAY)
    cache.set((2, None, TOMORROW), SLOTS, today=TODAY)
    cache.set((1, None, TOMORROW), SLOTS, today=TODAY)

    cache.set((3, None, TOMORROW), SLOTS, today=TODAY)

    assert len(cache) == 2
    assert cache.get((2, None, TOMORROW), today=TODAY) is None
    assert cache.get((1, None, TOMORROW), today=TODAY) == SLOTS
    assert cache.get((3, None, TOMORROW), today=TODAY) == SLOTS

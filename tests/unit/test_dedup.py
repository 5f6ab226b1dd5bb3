from zaplight.relay.dedup import Deduplicator


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_first_sighting_is_new_and_repeat_is_duplicate() -> None:
    dedup = Deduplicator(window_s=120, clock=FakeClock())

    assert dedup.check_and_record("evt1") is True
    assert dedup.check_and_record("evt1") is False
    assert dedup.check_and_record("evt2") is True
    assert dedup.duplicates == 1
    assert len(dedup) == 2


def test_id_expires_after_window() -> None:
    clock = FakeClock()
    dedup = Deduplicator(window_s=120, clock=clock)
    dedup.check_and_record("evt1")

    clock.now = 119.0
    assert dedup.check_and_record("evt1") is False

    # Duplicates do not extend the window; expiry counts from first sighting.
    clock.now = 121.0
    assert "evt1" not in dedup
    assert dedup.check_and_record("evt1") is True


def test_capacity_evicts_oldest_first() -> None:
    dedup = Deduplicator(window_s=120, capacity=2, clock=FakeClock())
    for event_id in ("a", "b", "c"):
        dedup.check_and_record(event_id)

    assert len(dedup) == 2
    assert "a" not in dedup
    assert "b" in dedup and "c" in dedup
    assert dedup.get_stats()["evicted"] == 1

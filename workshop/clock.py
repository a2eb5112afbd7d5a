from datetime import date, datetime, timezone


def to_naive_utc(moment: datetime) -> datetime:
    """Timestamps are stored without tzinfo, always in UTC."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


class Clock:
    """Source of the current time. Swapped for a fixed clock in tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def today(self) -> date:
        return self.now().date()


class FixedClock(Clock):
    def __init__(self, moment: datetime):
        self.moment = to_naive_utc(moment)

    def now(self) -> datetime:
        return self.moment

    def advance_to(self, moment: datetime) -> None:
        self.moment = to_naive_utc(moment)


_clock = Clock()


def get_clock() -> Clock:
    return _clock

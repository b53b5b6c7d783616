import pytest

from fetchhero import BaseClock


class MockedClock(BaseClock):
    def __init__(self, now: float = 1440504000) -> None:  # Tue, 25 Aug 2015 12:00:00 GMT
        self.current = now

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture()
def clock() -> MockedClock:
    return MockedClock()

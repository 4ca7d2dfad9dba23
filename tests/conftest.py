"""Shared fixtures for ibeacon_locator tests."""

from __future__ import annotations

import pytest

from ibeacon_locator.models import AnchorBeacon, BeaconIdentity

UUID = "e2c56db5-dffb-48d2-b060-d0f5a71096e0"


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled and not self.fired:
            self.fired = True
            self.function()


class FakeTimerFactory:
    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]

    def fire_all(self) -> None:
        for timer in self.pending:
            timer.fire()


@pytest.fixture
def timer_factory():
    return FakeTimerFactory()


@pytest.fixture
def identity():
    def _identity(minor: int, major: int = 1, uuid: str = UUID) -> BeaconIdentity:
        return BeaconIdentity(uuid=uuid, major=major, minor=minor)

    return _identity


@pytest.fixture
def tetra_anchors(identity):
    """Four anchors: origin plus one on each axis at 4 m."""
    return [
        AnchorBeacon(identity(1), 0.0, 0.0, 0.0),
        AnchorBeacon(identity(2), 4.0, 0.0, 0.0),
        AnchorBeacon(identity(3), 0.0, 4.0, 0.0),
        AnchorBeacon(identity(4), 0.0, 0.0, 4.0),
    ]

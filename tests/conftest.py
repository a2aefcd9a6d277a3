"""Shared fixtures: a fast-forwarded scheduler and relays built on it."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from command_relay import CommandRelay


class ManualTimer:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when a test calls advance()."""

    def __init__(self, start=1000.0):
        self._now = start
        self.timers = []

    def now(self):
        return self._now

    def call_later(self, delay, callback, *args):
        timer = ManualTimer(self._now + delay, callback, args)
        self.timers.append(timer)
        return timer

    def advance(self, seconds):
        """Move the clock forward, firing due timers in deadline order."""
        self._now += seconds
        while True:
            due = [t for t in self.timers
                   if not t.cancelled and not t.fired and t.when <= self._now]
            if not due:
                return
            timer = min(due, key=lambda t: t.when)
            timer.fired = True
            timer.callback(*timer.args)

    @property
    def live_timers(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]


async def run_pending(rounds=5):
    """Let queued tasks and call_soon callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def relay(scheduler):
    relay = CommandRelay(scheduler=scheduler)
    yield relay
    relay.close()


# ============================================================
# Sample Figma document (GET /files/:key "document" field)
# ============================================================

def solid(r, g, b, opacity=None, visible=True):
    fill = {"type": "SOLID", "color": {"r": r, "g": g, "b": b, "a": 1}, "visible": visible}
    if opacity is not None:
        fill["opacity"] = opacity
    return fill


SAMPLE_DOCUMENT = {
    "id": "0:0",
    "name": "Document",
    "type": "DOCUMENT",
    "children": [{
        "id": "0:1",
        "name": "Page 1",
        "type": "CANVAS",
        "children": [
            {
                "id": "1:2",
                "name": "Login",
                "type": "FRAME",
                "absoluteBoundingBox": {"width": 375, "height": 812},
                "layoutMode": "VERTICAL",
                "itemSpacing": 16,
                "paddingTop": 24,
                "paddingLeft": 24,
                "fills": [solid(1, 1, 1)],
                "children": [
                    {
                        "id": "1:3",
                        "name": "Title",
                        "type": "TEXT",
                        "style": {"fontFamily": "Inter", "fontSize": 24, "fontWeight": 700, "lineHeightPx": 32},
                        "fills": [solid(0, 0, 0)],
                    },
                    {
                        "id": "1:4",
                        "name": "Body",
                        "type": "TEXT",
                        "style": {"fontFamily": "Inter", "fontSize": 24, "fontWeight": 700, "lineHeightPx": 32},
                        "fills": [solid(0, 0, 0), solid(1, 0, 0, visible=False)],
                    },
                ],
            },
            {"id": "1:5", "name": "Button", "type": "COMPONENT", "description": "Primary CTA",
             "absoluteBoundingBox": {"width": 120, "height": 40}},
            {"id": "1:6", "name": "Inputs", "type": "COMPONENT_SET"},
        ],
    }],
}

"""Temporal windows used to search time-indexed sources."""

from __future__ import annotations

from typing import NamedTuple

import pandas as pd


class TimeWindow(NamedTuple):
    """Half-open interval [start, end)."""

    start: pd.Timestamp
    end: pd.Timestamp

    def contains(self, t: pd.Timestamp) -> bool:
        return self.start <= t < self.end


def resolve_window(timestamp: pd.Timestamp, lead: pd.DateOffset, lag: pd.DateOffset) -> TimeWindow:
    """Return [timestamp - lead, timestamp + lag).

    Offsets are calendar offsets, so years: 3 lands on the same month/day
    (Feb 29 clamps to Feb 28).
    """
    t = pd.Timestamp(timestamp)
    return TimeWindow(start=t - lead, end=t + lag)

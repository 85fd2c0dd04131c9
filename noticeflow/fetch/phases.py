"""Scrape phase definitions: the finite state machine states and transitions."""

from __future__ import annotations

from enum import Enum


class ScrapePhase(str, Enum):
    """One scrape of one record moves through these phases."""

    RESOLVE = "RESOLVE"
    FETCH = "FETCH"
    CLASSIFY = "CLASSIFY"
    EXTRACT = "EXTRACT"
    PERSIST = "PERSIST"
    COMPLETE = "COMPLETE"
    FAIL = "FAIL"


# CLASSIFY -> FETCH is the retry edge.
VALID_TRANSITIONS: dict[ScrapePhase, set[ScrapePhase]] = {
    ScrapePhase.RESOLVE: {ScrapePhase.FETCH, ScrapePhase.FAIL},
    ScrapePhase.FETCH: {ScrapePhase.CLASSIFY, ScrapePhase.FAIL},
    ScrapePhase.CLASSIFY: {ScrapePhase.EXTRACT, ScrapePhase.FETCH, ScrapePhase.FAIL},
    ScrapePhase.EXTRACT: {ScrapePhase.PERSIST, ScrapePhase.FAIL},
    ScrapePhase.PERSIST: {ScrapePhase.COMPLETE, ScrapePhase.FAIL},
    ScrapePhase.COMPLETE: set(),  # terminal
    ScrapePhase.FAIL: set(),  # terminal
}

TERMINAL_PHASES = {ScrapePhase.COMPLETE, ScrapePhase.FAIL}

"""
Tests for incremental diffing of successive parse results.
"""

from oneline.schemas import ParseResult, TimelineEvent
from oneline.services.event_diff import EventDiffTracker, diff_parse_results
from oneline.services.timeline_parser import parse_timeline_text

TEXT = """===SUMMARY===
Ports reopen after the strike.

===EVENTS===
--E1--
Date: 2024-10-01
Title: Strike begins
Description: Dock workers walk out.
People: Union(labour,#ff0000)
Source: Wire (https://wire.example/1)

--E2--
Date: 2024-10-04
Title: Tentative deal
Description: Wages agreed in principle.
People: Alliance(employers,#0000ff)
Source: Wire (https://wire.example/2)

--E3--
Date: 2024-09
Title: Talks stall
Description: Negotiations break down.
People: Union(labour,#ff0000)
Source: https://news.example/3
"""


def _event(event_id: str, title: str = "") -> TimelineEvent:
    return TimelineEvent(id=event_id, title=title)


def test_diff_returns_only_unseen_ids():
    previous = ParseResult(events=[_event("event-0")])
    current = ParseResult(events=[_event("event-0", "changed"), _event("event-1")])
    delta = diff_parse_results(previous, current)
    assert [event.id for event in delta.new_events] == ["event-1"]
    assert delta.summary is None


def test_diff_reports_summary_change_only():
    previous = ParseResult(summary="a")
    assert diff_parse_results(previous, ParseResult(summary="a")).summary is None
    assert diff_parse_results(previous, ParseResult(summary="b")).summary == "b"
    assert diff_parse_results(None, ParseResult()).is_empty


def test_ids_are_emitted_once_across_every_prefix():
    tracker = EventDiffTracker()
    emitted: list[str] = []
    summaries: list[str] = []

    for end in range(1, len(TEXT) + 1):
        delta = tracker.update(parse_timeline_text(TEXT[:end]))
        emitted.extend(event.id for event in delta.new_events)
        if delta.summary is not None:
            summaries.append(delta.summary)

    final = parse_timeline_text(TEXT, complete=True)
    delta = tracker.update(final)
    emitted.extend(event.id for event in delta.new_events)

    assert len(emitted) == len(set(emitted))
    assert set(emitted) == {event.id for event in final.events}
    assert summaries == ["Ports reopen after the strike."]
    assert tracker.delivered_count == 3


def test_delivered_events_are_frozen():
    tracker = EventDiffTracker()
    tracker.update(ParseResult(events=[_event("event-0", "first")]))
    delta = tracker.update(ParseResult(events=[_event("event-0", "second")]))
    assert delta.is_empty

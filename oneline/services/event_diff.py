"""
Diffing of successive parse results for incremental event delivery.

Equality is by event id only: once an id has been surfaced its fields are
frozen from the consumer's point of view, even if a later parse of the
same record differs. The parser's closed-record policy is what keeps
premature, truncated records from being surfaced in the first place.
"""

from collections.abc import Iterable

from oneline.schemas import ParseResult, TimelineDelta, TimelineEvent


def diff_parse_results(
    previous: ParseResult | None,
    current: ParseResult,
    already_seen: Iterable[str] = (),
) -> TimelineDelta:
    """
    Events of ``current`` whose ids appear neither in ``previous`` nor in
    ``already_seen``, plus the summary when it differs from ``previous``.
    """
    seen = set(already_seen)
    previous_summary = ""
    if previous is not None:
        seen.update(event.id for event in previous.events)
        previous_summary = previous.summary

    new_events: list[TimelineEvent] = []
    for event in current.events:
        if event.id in seen:
            continue
        seen.add(event.id)
        new_events.append(event)

    summary = None
    if current.summary and current.summary != previous_summary:
        summary = current.summary

    return TimelineDelta(new_events=new_events, summary=summary)


class EventDiffTracker:
    """
    Session-scoped tracker of what has already been delivered downstream.

    Feed it every fresh ParseResult; it returns only what is new.
    """

    def __init__(self):
        self.delivered_ids: set[str] = set()
        self.delivered_summary: str = ""
        self.last_result: ParseResult | None = None

    def update(self, result: ParseResult) -> TimelineDelta:
        delta = diff_parse_results(self.last_result, result, self.delivered_ids)
        if delta.summary == self.delivered_summary:
            delta.summary = None
        self.delivered_ids.update(event.id for event in delta.new_events)
        if delta.summary is not None:
            self.delivered_summary = delta.summary
        self.last_result = result
        return delta

    @property
    def delivered_count(self) -> int:
        return len(self.delivered_ids)

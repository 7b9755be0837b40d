"""Decide Success / PartialSuccess / Failure from the event history.

Three independent predicates are evaluated over the whole history:

- terminal error: an ERROR event carrying one of the hard-stop phrases
- critical error: an ERROR event that is not a terminal error
- success signal: a SUCCESS event carrying one of the completion phrases

A terminal error always wins over a success signal. A critical error next
to a success signal downgrades the run to PartialSuccess.
"""

from typing import Iterable

from ..core.constants import SUCCESS_PHRASES, TERMINAL_ERROR_PHRASES
from ..core.events import LogEvent, LogLevel, Outcome


def is_terminal_error(event: LogEvent) -> bool:
    return event.level is LogLevel.ERROR and any(
        phrase in event.text for phrase in TERMINAL_ERROR_PHRASES
    )


def is_critical_error(event: LogEvent) -> bool:
    return event.level is LogLevel.ERROR and not is_terminal_error(event)


def is_success_signal(event: LogEvent) -> bool:
    return event.level is LogLevel.SUCCESS and any(
        phrase in event.text for phrase in SUCCESS_PHRASES
    )


def has_terminal_error(history: Iterable[LogEvent]) -> bool:
    return any(is_terminal_error(e) for e in history)


def has_critical_error(history: Iterable[LogEvent]) -> bool:
    return any(is_critical_error(e) for e in history)


def has_success_signal(history: Iterable[LogEvent]) -> bool:
    return any(is_success_signal(e) for e in history)


def is_completion_line(event: LogEvent) -> bool:
    """A completion phrase at any level; only SUCCESS-level ones count toward the outcome."""
    return any(phrase in event.text for phrase in SUCCESS_PHRASES)


def is_terminal(event: LogEvent) -> bool:
    """True when this event ends the operation (completion phrase or hard stop)."""
    return is_completion_line(event) or is_terminal_error(event)


def evaluate(history: Iterable[LogEvent]) -> Outcome:
    history = list(history)
    if not has_success_signal(history) or has_terminal_error(history):
        return Outcome.FAILURE
    if has_critical_error(history):
        return Outcome.PARTIAL_SUCCESS
    return Outcome.SUCCESS

"""Events emitted by a chat turn and their wire encoding."""

from dataclasses import dataclass
from typing import Union

from app.exceptions.chat import TurnErrorKind


APOLOGY_TEXT = "An error occurred while processing your request. Please try again."


@dataclass(frozen=True)
class TextDelta:
    """An incremental fragment of the assistant's answer."""

    text: str


@dataclass(frozen=True)
class ErrorMarker:
    """A failure that happened after streaming started."""

    kind: TurnErrorKind
    message: str = APOLOGY_TEXT


@dataclass(frozen=True)
class EndMarker:
    """Terminal event; always the last event of a turn."""


TurnEvent = Union[TextDelta, ErrorMarker, EndMarker]


def encode_event(event: TurnEvent, sentinel: str) -> str:
    """Render an event for the plain-text stream.

    Deltas are sent verbatim, errors as their user-readable message and the
    end marker as the sentinel.
    """
    if isinstance(event, TextDelta):
        return event.text
    if isinstance(event, ErrorMarker):
        return event.message
    if isinstance(event, EndMarker):
        return sentinel
    raise TypeError(f"Unknown turn event: {event!r}")

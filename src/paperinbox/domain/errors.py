"""Exceptions raised by the inbox pipeline."""

from __future__ import annotations


class InboxError(Exception):
    """Base class for inbox pipeline failures."""


class SourceFetchFailed(InboxError):
    """The source collaborator failed while searching for a feed's query."""

    def __init__(self, feed_name: str, message: str):
        super().__init__(f"Source fetch failed for feed '{feed_name}': {message}")
        self.feed_name = feed_name


class PersistenceWriteFailed(InboxError):
    """A store commit failed; nothing from that unit of work was written."""

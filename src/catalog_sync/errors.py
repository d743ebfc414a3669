from __future__ import annotations


class SyncError(Exception):
    """Aborts a sync run before any snapshot is written."""


class FeedError(SyncError):
    pass


class FeedFetchError(SyncError):
    pass

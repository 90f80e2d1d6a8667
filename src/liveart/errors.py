from __future__ import annotations


class LiveArtError(Exception):
    """Base class for every error raised by the engine."""


# ---- feed errors ----

class FeedError(LiveArtError):
    def __init__(self, feed_id: str, msg: str = ""):
        self.feed_id = feed_id
        super().__init__(f"{feed_id}: {msg}" if msg else feed_id)


class FeedUnavailable(FeedError):
    """
    Transient. The source could not deliver right now; callers retry with backoff.
    """


class UnknownFeed(FeedError):
    """
    Permanent. No source knows this feed id; never retried.
    """


# ---- configuration / registration errors ----

class InvalidRule(LiveArtError, ValueError):
    def __init__(self, msg: str, rule_id: str | None = None):
        self.rule_id = rule_id
        super().__init__(f"rule {rule_id}: {msg}" if rule_id else msg)


class DuplicateAsset(LiveArtError):
    def __init__(self, asset_id: str):
        self.asset_id = asset_id
        super().__init__(f"asset already registered: {asset_id}")


class AssetNotFound(LiveArtError, KeyError):
    def __init__(self, asset_id: str):
        self.asset_id = asset_id
        super().__init__(asset_id)

    def __str__(self) -> str:
        return f"asset not found: {self.asset_id}"

from datetime import datetime

from github_stars_mcp.stores.sqlite import StarsStore


async def get_watermark(store: StarsStore) -> datetime | None:
    """The most recent `starred_at` already persisted, or None when the store holds no repositories."""

    return await store.latest_starred_at()


def is_at_or_below_watermark(starred_at: datetime, watermark: datetime | None) -> bool:
    return watermark is not None and starred_at <= watermark

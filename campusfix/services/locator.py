"""Block / coverage-area normalization shared by locations and workers."""

from typing import NewType, Optional

from campusfix.config import settings

LocatorKey = NewType("LocatorKey", str)


def normalize_locator(value: Optional[str], default: Optional[str] = None) -> LocatorKey:
    """Case-fold and trim a block or coverage-area string.

    Blank or missing values land in the default bucket, so a room with no
    block and a cleaner with no area meet in the same group.
    """
    bucket = (default or settings.DEFAULT_LOCATOR).strip().upper()
    if value is None:
        return LocatorKey(bucket)
    key = value.strip().upper()
    return LocatorKey(key or bucket)


def same_locator(left: Optional[str], right: Optional[str]) -> bool:
    return normalize_locator(left) == normalize_locator(right)

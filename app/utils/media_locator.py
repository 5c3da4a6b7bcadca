from __future__ import annotations

"""
Media locator parsing.

Content rows store a `media_locator` that is either a bare identifier
(a 32-hex video uid, or an object key) or a full URL pointing at the
provider. These helpers reduce both shapes to what the issuer signs.
"""

import re
from typing import Optional
from urllib.parse import urlparse

from app.schemas.enums import MediaKind

_VIDEO_UID_RE = re.compile(r"^[a-fA-F0-9]{32}$")

AUDIO_EXTENSIONS = frozenset({"mp3", "wav", "ogg", "aac", "m4a", "flac"})
IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "webp", "gif", "avif"})


def extract_video_uid(locator: Optional[str]) -> Optional[str]:
    """Video uid from a bare uid or a stream URL whose first path segment is the uid.

    >>> extract_video_uid("https://customer-x.cloudflarestream.com/0123456789abcdef0123456789abcdef/manifest/video.m3u8")
    '0123456789abcdef0123456789abcdef'
    """
    value = (locator or "").strip()
    if not value:
        return None
    if _VIDEO_UID_RE.fullmatch(value):
        return value
    if "://" not in value:
        return None
    segments = [s for s in urlparse(value).path.split("/") if s]
    if segments and _VIDEO_UID_RE.fullmatch(segments[0]):
        return segments[0]
    return None


def extract_storage_key(locator: Optional[str]) -> Optional[str]:
    """Object key: the locator itself when it has no scheme, else the URL path.

    Query strings (stale signatures) are dropped.
    """
    value = (locator or "").strip()
    if not value:
        return None
    if "://" not in value:
        return value
    key = urlparse(value).path.lstrip("/")
    return key or None


def media_kind_from_key(key: str) -> MediaKind:
    """Guess the media family from an object key's extension (default: video)."""
    ext = key.rsplit(".", 1)[-1].lower() if "." in key else ""
    if ext in AUDIO_EXTENSIONS:
        return MediaKind.AUDIO
    if ext in IMAGE_EXTENSIONS:
        return MediaKind.IMAGE
    return MediaKind.VIDEO


__all__ = ["extract_video_uid", "extract_storage_key", "media_kind_from_key"]

"""Recognition of video-hosting URLs.

Covers the YouTube URL shapes users actually paste: ``watch?v=``,
``youtu.be/`` short links, ``/embed/``, ``/shorts/``, ``/live/`` and
the ``m.`` / ``music.`` sub-domains.
"""

from __future__ import annotations

import re

_VIDEO_ID = r"([A-Za-z0-9_-]{11})"

_VIDEO_URL_PATTERNS = (
    re.compile(r"(?:https?://)?(?:www\.|m\.|music\.)?youtube\.com/watch\?(?:.*&)?v=" + _VIDEO_ID),
    re.compile(r"(?:https?://)?(?:www\.)?youtu\.be/" + _VIDEO_ID),
    re.compile(r"(?:https?://)?(?:www\.|m\.)?youtube(?:-nocookie)?\.com/embed/" + _VIDEO_ID),
    re.compile(r"(?:https?://)?(?:www\.|m\.)?youtube\.com/(?:shorts|live|v)/" + _VIDEO_ID),
)


def parse_video_id(url: str) -> str | None:
    """Return the 11-character video id in *url*, or ``None``."""
    if not url:
        return None
    for pattern in _VIDEO_URL_PATTERNS:
        match = pattern.search(url.strip())
        if match:
            return match.group(1)
    return None


def is_video_url(url: str) -> bool:
    """Return ``True`` if *url* points at a recognized video page."""
    return parse_video_id(url) is not None


def canonical_video_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"

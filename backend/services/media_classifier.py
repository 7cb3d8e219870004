from __future__ import annotations

import os

from models.media import MediaAsset, MediaKind

VIDEO_EXTENSIONS = frozenset({".mp4", ".mov", ".webm", ".avi"})


def classify(path: str | os.PathLike[str]) -> MediaKind:
    """Decide image vs video from the file extension alone. Unknown extensions are images."""
    ext = os.path.splitext(os.fspath(path))[1].lower()
    return MediaKind.VIDEO if ext in VIDEO_EXTENSIONS else MediaKind.IMAGE


def media_asset(path: str | os.PathLike[str]) -> MediaAsset:
    return MediaAsset(path=os.fspath(path), kind=classify(path))

from dataclasses import dataclass
from enum import Enum


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclass(frozen=True)
class MediaAsset:
    path: str                  # uploaded file on local disk, owned by the run
    kind: MediaKind


@dataclass(frozen=True)
class FrameHandle:
    source_asset: MediaAsset
    index: int                 # 0-based, temporal order within the source
    path: str                  # equals source_asset.path for image assets

#!/usr/bin/env python3
"""
Mirror Models

Data models for releases, assets and mirror outcomes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EnumerationMode(Enum):
    """Which releases of a project are visited."""

    ALL = "all"
    LATEST = "latest"


class MirrorState(Enum):
    """State of one asset in the mirror worker."""

    UNCHECKED = "unchecked"
    PRESENT = "present"
    MISSING = "missing"
    MIRRORED = "mirrored"
    PLANNED = "planned"  # Missing, but dry run
    FAILED = "failed"


@dataclass(frozen=True)
class Asset:
    """One downloadable file attached to a release."""

    id: int
    name: str
    browser_download_url: str
    size: int | None = None  # As advertised by the listing; the transferred size is authoritative

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "Asset":
        return cls(
            id=int(payload["id"]),
            name=payload["name"],
            browser_download_url=payload["browser_download_url"],
            size=payload.get("size"),
        )


@dataclass(frozen=True)
class Release:
    """
    A tagged, published version of a project.

    Assets embedded in the release payload are ignored; AssetResolver lists them.
    """

    id: int
    tag_name: str
    name: str | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "Release":
        return cls(
            id=int(payload["id"]),
            tag_name=payload["tag_name"],
            name=payload.get("name"),
        )


@dataclass(frozen=True)
class StorageLocation:
    """Bucket identity used to build every public URL of a run."""

    bucket_name: str
    location: str


@dataclass
class MirrorResult:
    """Outcome of mirroring one asset."""

    project: str
    version: str
    filename: str
    target_path: str
    state: MirrorState = MirrorState.UNCHECKED
    url: str | None = None
    bytes_transferred: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state in (MirrorState.PRESENT, MirrorState.MIRRORED)


@dataclass
class SyncStats:
    """Counters for one mirror run."""

    projects: int = 0
    releases: int = 0
    present: int = 0
    mirrored: int = 0
    planned: int = 0
    failed: int = 0
    bytes_uploaded: int = 0
    failed_projects: dict[str, str] = field(default_factory=dict)

    def add_result(self, result: MirrorResult) -> None:
        match result.state:
            case MirrorState.PRESENT:
                self.present += 1
            case MirrorState.MIRRORED:
                self.mirrored += 1
                self.bytes_uploaded += result.bytes_transferred
            case MirrorState.PLANNED:
                self.planned += 1
            case MirrorState.FAILED:
                self.failed += 1

    @property
    def succeeded(self) -> bool:
        return not self.failed_projects and self.failed == 0

"""
Core Data Structures for the addman Sync Subsystem

This module defines the add-on model, its persisted update state, and the
remote documents the release resolver decodes.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

from addman.constants import DIR_SEPARATOR, EXCLUDE_PREFIX, SKIP_PREFIX
from addman.exceptions import AddonUpdateError, DecodeError
from addman.utils import format_iso_datetime_utc, parse_iso_datetime_utc

if TYPE_CHECKING:
    from addman.log_utils import AddonLog

    from .fetcher import CacheFetcher
    from .task_pool import TaskPool


class ReleaseStrategy(enum.IntEnum):
    """How an add-on's current release is discovered on GitHub."""

    RELEASE = 0
    """Latest release and its attached assets"""

    TAG = 1
    """Raw tag refs, for projects without formal releases"""

    @classmethod
    def parse(cls, value: Union[int, str, "ReleaseStrategy", None]) -> "ReleaseStrategy":
        """
        Convert a configured release type to a strategy.

        Accepts the numeric form (`0`, `1`) or the names `release` and `tag`
        (case-insensitive). A missing value means `RELEASE`.

        Raises:
            ValueError: If the value names no known strategy.
        """
        if value is None or value == "":
            return cls.RELEASE
        if isinstance(value, bool):
            raise ValueError(f"unknown release type {value}")
        if isinstance(value, str):
            name = value.strip().upper()
            if name.isdigit():
                return cls(int(name))
            try:
                return cls[name]
            except KeyError:
                raise ValueError(f"unknown release type {value}") from None
        return cls(value)


class UpdateOutcome(enum.Enum):
    UPDATED = "updated"
    UP_TO_DATE = "up to date"
    SKIPPED = "skipped"
    FAILED = "failed"


def normalize_dir(value: str) -> str:
    """Ensure a configured directory ends with a trailing separator."""
    if value.endswith(DIR_SEPARATOR):
        return value
    return value + DIR_SEPARATOR


def split_dirs(dirs: List[str]) -> Tuple[List[str], List[str]]:
    """
    Split user-entered directory rules into include and exclude prefixes.

    Entries starting with `-` are exclusions. Every returned prefix is
    normalized to end with a separator; order of appearance is kept.

    Returns:
        Tuple[List[str], List[str]]: (include_dirs, exclude_dirs)
    """
    include_dirs: List[str] = []
    exclude_dirs: List[str] = []
    for raw in dirs:
        entry = normalize_dir(raw)
        if entry.startswith(EXCLUDE_PREFIX):
            exclude_dirs.append(entry[len(EXCLUDE_PREFIX) :])
        else:
            include_dirs.append(entry)
    return include_dirs, exclude_dirs


def split_addon_name(name: str) -> Tuple[str, str]:
    """
    Split `Project/Addon` into its two parts.

    Raises:
        ValueError: Unless the name has exactly one separator with non-empty parts on both sides.
    """
    project, sep, short_name = name.partition(DIR_SEPARATOR)
    if (
        not sep
        or not project.strip()
        or not short_name.strip()
        or DIR_SEPARATOR in short_name
    ):
        raise ValueError(f"addon name misformatted, expected Project/Addon: {name!r}")
    return project, short_name


@dataclass
class UpdateInfo:
    """Persisted update state of one add-on."""

    version: str = ""
    """Display label; the manifest version, the release tag, or the tag ref"""

    updated_on: Optional[datetime] = None
    """Asset timestamp, authoritative for the release strategy"""

    ref_sha: str = ""
    """Tag ref, authoritative for the tag strategy"""

    extracted_dirs: List[str] = field(default_factory=list)
    """Top-level directories owned on disk, removed before the next extraction"""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UpdateInfo":
        data = data or {}
        return cls(
            version=str(data.get("Version") or ""),
            updated_on=parse_iso_datetime_utc(data.get("UpdatedOn")),
            ref_sha=str(data.get("RefSha") or ""),
            extracted_dirs=[str(d) for d in data.get("ExtractedDirs") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.version:
            data["Version"] = self.version
        if self.updated_on is not None:
            data["UpdatedOn"] = format_iso_datetime_utc(self.updated_on)
        if self.ref_sha:
            data["RefSha"] = self.ref_sha
        data["ExtractedDirs"] = list(self.extracted_dirs)
        return data


@dataclass
class Addon:
    """A tracked add-on and the rules for what to extract from its archives."""

    name: str
    """Normalized `Project/Addon` identifier"""

    dirs: List[str] = field(default_factory=list)
    """Raw directory rules as entered by the user"""

    strategy: ReleaseStrategy = ReleaseStrategy.RELEASE

    skip: bool = False
    """Check for updates but never download them"""

    update_info: UpdateInfo = field(default_factory=UpdateInfo)

    name_cfg: Optional[str] = None
    """Name as written in the config file, e.g. with a leading `-`"""

    project: str = field(init=False)
    short_name: str = field(init=False)
    include_dirs: List[str] = field(init=False)
    exclude_dirs: List[str] = field(init=False)

    def __post_init__(self) -> None:
        self.project, self.short_name = split_addon_name(self.name)
        self.include_dirs, self.exclude_dirs = split_dirs(self.dirs)
        if self.name_cfg is None:
            self.name_cfg = SKIP_PREFIX + self.name if self.skip else self.name

    @classmethod
    def from_config(
        cls,
        name_cfg: str,
        dirs: Optional[List[str]] = None,
        strategy: Union[int, str, ReleaseStrategy, None] = None,
        update_info: Optional[UpdateInfo] = None,
    ) -> "Addon":
        """
        Build an add-on from its configured entry.

        A leading `-` on the name marks the add-on as skipped and is stripped
        from the normalized name.
        """
        skip = name_cfg.startswith(SKIP_PREFIX)
        name = name_cfg[len(SKIP_PREFIX) :] if skip else name_cfg
        return cls(
            name=name,
            dirs=[normalize_dir(d) for d in dirs or []],
            strategy=ReleaseStrategy.parse(strategy),
            skip=skip,
            update_info=update_info if update_info is not None else UpdateInfo(),
            name_cfg=name_cfg,
        )


@dataclass
class DownloadAsset:
    """The single downloadable artifact resolved for an add-on; never persisted."""

    name: str
    download_url: str
    size: int = 0
    content_type: str = ""
    updated_at: Optional[datetime] = None
    ref_sha: str = ""
    version: str = ""
    release_kind: Optional[ReleaseStrategy] = None

    @classmethod
    def from_github(cls, data: Dict[str, Any]) -> "DownloadAsset":
        """
        Create an asset from an entry of a release's `assets` list.

        Raises:
            DecodeError: If the entry is not an object, lacks a name or download URL,
                or carries a size or `updated_at` that cannot be parsed.
        """
        if not isinstance(data, dict):
            raise DecodeError(
                "malformed release asset", details=f"expected object, got {type(data).__name__}"
            )
        name = data.get("name")
        url = data.get("browser_download_url")
        if not isinstance(name, str) or not name or not isinstance(url, str):
            raise DecodeError("malformed release asset", details=repr(data))
        try:
            size = int(data.get("size") or 0)
        except (TypeError, ValueError):
            raise DecodeError(
                "malformed release asset", details=f"invalid size for {name}"
            ) from None
        raw_updated_at = data.get("updated_at")
        updated_at = parse_iso_datetime_utc(raw_updated_at)
        if raw_updated_at and updated_at is None:
            raise DecodeError(
                "malformed release asset", details=f"invalid updated_at for {name}"
            )
        return cls(
            name=name,
            download_url=url,
            size=size,
            content_type=str(data.get("content_type") or ""),
            updated_at=updated_at,
        )


@dataclass
class LatestRelease:
    """The `releases/latest` document: its tag and candidate assets."""

    tag_name: str
    assets: List[DownloadAsset] = field(default_factory=list)

    @classmethod
    def from_github(cls, data: Any) -> "LatestRelease":
        if not isinstance(data, dict):
            raise DecodeError("malformed release document", details="expected object")
        assets = data.get("assets")
        if assets is None:
            assets = []
        if not isinstance(assets, list):
            raise DecodeError("malformed release document", details="assets is not a list")
        return cls(
            tag_name=str(data.get("tag_name") or ""),
            assets=[DownloadAsset.from_github(a) for a in assets],
        )


@dataclass
class TagRef:
    ref: str
    sha: str = ""

    @classmethod
    def list_from_github(cls, data: Any) -> List["TagRef"]:
        """
        Decode the `git/refs/tags` list.

        Raises:
            DecodeError: If the document is not a list of ref objects.
        """
        if not isinstance(data, list):
            raise DecodeError("malformed tag refs", details="expected list")
        refs = []
        for entry in data:
            if not isinstance(entry, dict) or not isinstance(entry.get("ref"), str):
                raise DecodeError("malformed tag refs", details=repr(entry))
            obj = entry.get("object")
            sha = obj.get("sha", "") if isinstance(obj, dict) else ""
            refs.append(cls(ref=entry["ref"], sha=str(sha or "")))
        return refs


@dataclass
class FlavorMetadata:
    flavor: str
    interface: Optional[int] = None


@dataclass
class ManifestRelease:
    version: str
    filename: str
    metadata: List[FlavorMetadata] = field(default_factory=list)

    def has_flavor(self, flavor: str) -> bool:
        return any(m.flavor == flavor for m in self.metadata)


@dataclass
class ReleaseManifest:
    """
    Decoded `release.json` asset.

    An absent `releases` key and an empty list both decode to no entries;
    entries of the wrong shape are a DecodeError.
    """

    releases: List[ManifestRelease] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "ReleaseManifest":
        if not isinstance(data, dict):
            raise DecodeError("malformed release manifest", details="expected object")
        raw_releases = data.get("releases")
        if raw_releases is None:
            return cls()
        if not isinstance(raw_releases, list):
            raise DecodeError(
                "malformed release manifest", details="releases is not a list"
            )

        releases = []
        for entry in raw_releases:
            if not isinstance(entry, dict):
                raise DecodeError("malformed release manifest", details=repr(entry))
            raw_meta = entry.get("metadata") or []
            if not isinstance(raw_meta, list):
                raise DecodeError(
                    "malformed release manifest", details="metadata is not a list"
                )
            metadata = [
                FlavorMetadata(
                    flavor=str(m.get("flavor") or ""), interface=m.get("interface")
                )
                for m in raw_meta
                if isinstance(m, dict)
            ]
            releases.append(
                ManifestRelease(
                    version=str(entry.get("version") or ""),
                    filename=str(entry.get("filename") or ""),
                    metadata=metadata,
                )
            )
        return cls(releases=releases)

    def find_flavor(self, flavor: str) -> Optional[ManifestRelease]:
        """Return the first entry providing `flavor`, if any."""
        for release in self.releases:
            if release.has_flavor(flavor):
                return release
        return None


@dataclass
class UpdateStatus:
    """Result of one add-on update, delivered back to the orchestrator."""

    addon: Addon
    outcome: UpdateOutcome = UpdateOutcome.UP_TO_DATE
    error: Optional[AddonUpdateError] = None
    elapsed: float = 0.0
    """Wall time of the update in seconds"""

    new_info: Optional[UpdateInfo] = None
    """Replacement update state, set only after a successful extraction"""

    log: Optional["AddonLog"] = None


@dataclass
class RunContext:
    """
    Run-scoped collaborators handed to every add-on update.

    Passing this explicitly keeps add-ons free of shared mutable state.
    """

    fetcher: "CacheFetcher"
    net_pool: "TaskPool"
    disk_pool: "TaskPool"
    addons_dir: str

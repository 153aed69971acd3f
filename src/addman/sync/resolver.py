"""
Release Resolver

Determines the single downloadable artifact that is an add-on's current
release.

Release strategy, in order:
1. fetch `releases/latest`; its assets are the candidate pool
2. if the pool holds a JSON `release.json`, fetch it as the release manifest
3. a manifest entry flavored `mainline` names the asset to use and its version;
   once a manifest claims a mainline build, a missing asset is an error
4. otherwise take the first zip whose name does not look like a classic build,
   versioned by the release tag

Tag strategy: the last entry of `git/refs/tags` becomes a synthesized archive
download. The provider's list order is relied upon; nothing is sorted here.
"""

import enum
import re
from dataclasses import replace
from typing import IO, List, Optional

from rich.markup import escape

from addman.constants import (
    CACHE_MANIFEST_FILE,
    CACHE_REF_FILE,
    CACHE_RELEASE_FILE,
    CLASSIC_FLAVORS_PATTERN,
    CONTENT_TYPE_JSON,
    CONTENT_TYPE_ZIP,
    GITHUB_ARCHIVE_URL,
    GITHUB_LATEST_RELEASE_URL,
    GITHUB_TAG_REFS_URL,
    MAINLINE_FLAVOR,
    RELEASE_MANIFEST_NAME,
    ZIP_EXTENSION,
)
from addman.exceptions import AddmanError, NoAssetFoundError
from addman.log_utils import logger

from .fetcher import CacheFetcher, fetch_json
from .interfaces import (
    Addon,
    DownloadAsset,
    LatestRelease,
    ReleaseManifest,
    ReleaseStrategy,
    TagRef,
)

# substring match on purpose: upstream file names were tuned against it, so
# a modern build whose name merely contains e.g. "bc" is excluded as well
CLASSIC_FLAVORS_RX = re.compile(CLASSIC_FLAVORS_PATTERN, re.IGNORECASE)


class ResolveState(enum.Enum):
    RESOLVE_RELEASE_ASSET = "resolve release asset"
    RESOLVE_RELEASE_MANIFEST = "resolve release manifest"
    SELECT_MAINLINE = "select mainline"
    FALLBACK_FIRST_MODERN_ZIP = "fallback first modern zip"
    RESOLVE_TAGGED_REF = "resolve tagged ref"
    DONE = "done"
    FAILED = "failed"


def is_classic_asset(name: str) -> bool:
    return CLASSIC_FLAVORS_RX.search(name) is not None


def is_release_manifest(asset: DownloadAsset) -> bool:
    return (
        asset.name == RELEASE_MANIFEST_NAME and asset.content_type == CONTENT_TYPE_JSON
    )


def find_manifest_asset(release: LatestRelease) -> Optional[DownloadAsset]:
    for asset in release.assets:
        if is_release_manifest(asset):
            return asset
    return None


def select_mainline_asset(
    release: LatestRelease, manifest: ReleaseManifest
) -> Optional[DownloadAsset]:
    """
    Pick the asset the manifest's mainline entry names.

    Returns:
        The resolved asset, or None when the manifest has no mainline entry.

    Raises:
        NoAssetFoundError: If the mainline entry names a file that is not among the zip assets.
    """
    entry = manifest.find_flavor(MAINLINE_FLAVOR)
    if entry is None:
        return None

    for asset in release.assets:
        if asset.content_type == CONTENT_TYPE_ZIP and asset.name == entry.filename:
            return replace(
                asset, version=entry.version, release_kind=ReleaseStrategy.RELEASE
            )
    raise NoAssetFoundError(
        "no matching asset found from release manifest",
        details=f"{entry.filename} is not a zip asset of release {release.tag_name}",
    )


def select_first_modern_zip(release: LatestRelease) -> Optional[DownloadAsset]:
    """Return the first zip asset whose name does not match a classic flavor."""
    for asset in release.assets:
        if asset.content_type == CONTENT_TYPE_ZIP and not is_classic_asset(asset.name):
            return replace(
                asset, version=release.tag_name, release_kind=ReleaseStrategy.RELEASE
            )
    return None


def find_release_asset(
    release: LatestRelease, manifest: Optional[ReleaseManifest] = None
) -> DownloadAsset:
    """
    Resolve the current asset of a release, given its optional manifest.

    Raises:
        NoAssetFoundError: If no asset survives the manifest and fallback rules.
    """
    if manifest is not None:
        asset = select_mainline_asset(release, manifest)
        if asset is not None:
            return asset

    asset = select_first_modern_zip(release)
    if asset is None:
        raise NoAssetFoundError(
            "no matching asset found",
            details=f"release {release.tag_name or '<untagged>'} has no modern zip asset",
        )
    return asset


def find_tagged_ref(name: str, refs: List[TagRef]) -> DownloadAsset:
    """
    Synthesize the archive download for the last tag ref of `name`.

    For `refs/tags/31` the asset is `31.zip`, downloaded from
    `https://github.com/{name}/archive/refs/tags/31.zip`; the full ref is
    both the version label and the reference identifier.

    Raises:
        NoAssetFoundError: If the project has no tags.
    """
    if not refs:
        raise NoAssetFoundError(f"did not find valid ref for {name}")

    ref = refs[-1].ref
    asset_name = ref.rsplit("/", 1)[-1] + ZIP_EXTENSION
    return DownloadAsset(
        name=asset_name,
        download_url=GITHUB_ARCHIVE_URL.format(name=name, ref=ref),
        size=0,
        content_type=CONTENT_TYPE_ZIP,
        updated_at=None,
        ref_sha=ref,
        version=ref,
        release_kind=ReleaseStrategy.TAG,
    )


class ReleaseResolver:
    """
    Drives release resolution for one add-on through the cache-aware fetcher.

    Each call walks the states of `ResolveState` until DONE or FAILED; the
    final state is kept on `state` for diagnostics.
    """

    def __init__(self, fetcher: CacheFetcher):
        self.fetcher = fetcher
        self.state = ResolveState.DONE

    def resolve(self, addon: Addon, buffer: IO[bytes]) -> DownloadAsset:
        """
        Resolve the current downloadable asset for `addon`.

        Parameters:
            addon (Addon): Add-on whose remote identity and strategy are used.
            buffer (IO[bytes]): Scratch buffer owned by the calling update.

        Raises:
            TransportError: A remote document could not be fetched.
            DecodeError: A remote document is malformed.
            NoAssetFoundError: No asset qualifies.
        """
        if addon.strategy == ReleaseStrategy.TAG:
            self.state = ResolveState.RESOLVE_TAGGED_REF
        else:
            self.state = ResolveState.RESOLVE_RELEASE_ASSET

        release: Optional[LatestRelease] = None
        manifest_asset: Optional[DownloadAsset] = None
        manifest: Optional[ReleaseManifest] = None
        resolved: Optional[DownloadAsset] = None

        try:
            while self.state not in (ResolveState.DONE, ResolveState.FAILED):
                logger.debug("Resolving %s: %s", escape(addon.name), self.state.value)

                if self.state == ResolveState.RESOLVE_RELEASE_ASSET:
                    release = self._fetch_latest_release(addon, buffer)
                    manifest_asset = find_manifest_asset(release)
                    self.state = (
                        ResolveState.RESOLVE_RELEASE_MANIFEST
                        if manifest_asset is not None
                        else ResolveState.FALLBACK_FIRST_MODERN_ZIP
                    )

                elif self.state == ResolveState.RESOLVE_RELEASE_MANIFEST:
                    assert manifest_asset is not None
                    manifest = self._fetch_manifest(addon, manifest_asset, buffer)
                    self.state = ResolveState.SELECT_MAINLINE

                elif self.state == ResolveState.SELECT_MAINLINE:
                    assert release is not None and manifest is not None
                    resolved = select_mainline_asset(release, manifest)
                    self.state = (
                        ResolveState.DONE
                        if resolved is not None
                        else ResolveState.FALLBACK_FIRST_MODERN_ZIP
                    )

                elif self.state == ResolveState.FALLBACK_FIRST_MODERN_ZIP:
                    assert release is not None
                    resolved = find_release_asset(release)
                    self.state = ResolveState.DONE

                elif self.state == ResolveState.RESOLVE_TAGGED_REF:
                    refs = self._fetch_tag_refs(addon, buffer)
                    resolved = find_tagged_ref(addon.name, refs)
                    self.state = ResolveState.DONE
        except AddmanError:
            self.state = ResolveState.FAILED
            raise

        assert resolved is not None
        return resolved

    def _fetch_latest_release(self, addon: Addon, buffer: IO[bytes]) -> LatestRelease:
        data = fetch_json(
            self.fetcher,
            GITHUB_LATEST_RELEASE_URL.format(name=addon.name),
            CACHE_RELEASE_FILE.format(short_name=addon.short_name),
            buffer,
        )
        return LatestRelease.from_github(data)

    def _fetch_manifest(
        self, addon: Addon, manifest_asset: DownloadAsset, buffer: IO[bytes]
    ) -> ReleaseManifest:
        data = fetch_json(
            self.fetcher,
            manifest_asset.download_url,
            CACHE_MANIFEST_FILE.format(short_name=addon.short_name),
            buffer,
        )
        return ReleaseManifest.from_dict(data)

    def _fetch_tag_refs(self, addon: Addon, buffer: IO[bytes]) -> List[TagRef]:
        data = fetch_json(
            self.fetcher,
            GITHUB_TAG_REFS_URL.format(name=addon.name),
            CACHE_REF_FILE.format(short_name=addon.short_name),
            buffer,
        )
        return TagRef.list_from_github(data)

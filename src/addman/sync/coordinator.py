"""
Add-on Update Coordinator

Sequences one add-on's update: report the known state, resolve the current
asset, compare, download, unzip, extract, and hand the new update state back
to the orchestrator. Steps are strictly sequential and each writes a line to
the add-on's own log stream.
"""

import copy
import io
import time
import zipfile
from typing import Optional

import requests

from addman.constants import CACHE_ARCHIVE_FILE
from addman.exceptions import AddmanError, AddonUpdateError, FormatError
from addman.log_utils import AddonLog
from addman.utils import format_release_date

from .extractor import ZipExtractor
from .interfaces import (
    Addon,
    DownloadAsset,
    ReleaseStrategy,
    RunContext,
    UpdateInfo,
    UpdateOutcome,
    UpdateStatus,
)
from .resolver import ReleaseResolver

# failures a single add-on can run into; anything else is a bug and is left
# to the task pool to contain
_STEP_ERRORS = (AddmanError, requests.RequestException, OSError)


def describe_release(
    kind: Optional[ReleaseStrategy], updated_on, ref_sha: str
) -> str:
    """Human-readable release marker: a date for releases, the ref for tags."""
    if kind == ReleaseStrategy.TAG:
        return ref_sha or "no ref"
    return format_release_date(updated_on)


def has_update(info: UpdateInfo, asset: DownloadAsset) -> bool:
    """
    Compare a resolved asset against the stored update state.

    Releases update only when the asset is strictly newer than the stored
    timestamp; tags update whenever the ref differs.
    """
    if asset.release_kind == ReleaseStrategy.RELEASE:
        if asset.updated_at is None:
            return False
        return info.updated_on is None or info.updated_on < asset.updated_at
    if asset.release_kind == ReleaseStrategy.TAG:
        return info.ref_sha != asset.ref_sha
    return False


class AddonUpdater:
    """Runs the update steps for add-ons against a shared run context."""

    def __init__(self, context: RunContext):
        self.context = context
        self.extractor = ZipExtractor(context.disk_pool)

    def update(self, addon: Addon, log: AddonLog) -> UpdateStatus:
        """
        Update one add-on and report how it went.

        The add-on's stored update info is never modified here; a replacement
        is returned in `UpdateStatus.new_info` for the orchestrator to apply.
        Errors are wrapped with the add-on's short name, logged to `log`, and
        returned as the status error.
        """
        start = time.monotonic()
        status = UpdateStatus(addon=addon, log=log)
        info = addon.update_info
        # owned exclusively by this update; never shared across add-ons
        buffer = io.BytesIO()

        def fail(message: str, err: BaseException) -> UpdateStatus:
            error = AddonUpdateError(addon.short_name, message, err)
            error.__cause__ = err
            log.error("%s", error)
            status.outcome = UpdateOutcome.FAILED
            status.error = error
            status.elapsed = time.monotonic() - start
            return status

        log.info(
            "checking for update (%s on %s)",
            info.version or "unknown",
            describe_release(addon.strategy, info.updated_on, info.ref_sha),
        )

        try:
            asset = ReleaseResolver(self.context.fetcher).resolve(addon, buffer)
            if asset.release_kind != addon.strategy:
                raise AddmanError(
                    "release type mismatch",
                    details=f"configured {addon.strategy.name.lower()}, "
                    f"resolved {asset.release_kind.name.lower() if asset.release_kind else 'unknown'}",
                )
        except _STEP_ERRORS as e:
            return fail(f"could not find update data for {addon.short_name}", e)

        marker = describe_release(asset.release_kind, asset.updated_at, asset.ref_sha)
        if not has_update(info, asset):
            log.info("no update found     (%s on %s)", asset.version, marker)
            status.elapsed = time.monotonic() - start
            return status
        if addon.skip:
            log.info("skipping update     (%s on %s)", asset.version, marker)
            status.outcome = UpdateOutcome.SKIPPED
            status.elapsed = time.monotonic() - start
            return status

        log.info("downloading update  (%s on %s) %s", asset.version, marker, asset.name)
        try:
            data = self.context.fetcher.fetch(
                asset.download_url,
                CACHE_ARCHIVE_FILE.format(
                    short_name=addon.short_name, asset_name=asset.name
                ),
                buffer,
            )
        except _STEP_ERRORS as e:
            return fail(f"unable to download update for {addon.short_name}", e)

        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
        except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
            err = FormatError(
                f"addon update for {addon.short_name} not zip format", details=str(e)
            )
            err.__cause__ = e
            return fail(f"error extracting update for {addon.short_name}", err)

        log.info("unzipping")
        working = copy.deepcopy(info)
        try:
            with archive:
                self.extractor.extract(
                    archive, addon, self.context.addons_dir, working
                )
        except _STEP_ERRORS as e:
            # keep versions, but record what is left on disk so the next run cleans it
            status.new_info = copy.deepcopy(info)
            status.new_info.extracted_dirs = list(working.extracted_dirs)
            return fail(f"error extracting update for {addon.short_name}", e)
        log.info("extracted %s", working.extracted_dirs)

        status.new_info = UpdateInfo(
            version=asset.version,
            updated_on=asset.updated_at,
            ref_sha=asset.ref_sha,
            extracted_dirs=list(working.extracted_dirs),
        )
        status.outcome = UpdateOutcome.UPDATED
        status.elapsed = time.monotonic() - start
        return status

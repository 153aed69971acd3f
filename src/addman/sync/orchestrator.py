"""
Sync Orchestrator

Fans out one update coordinator per add-on onto a bounded pool, prints each
add-on's log as a single block once its update finishes, applies successful
update state, and aggregates the outcome of the run.
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import requests
from rich.markup import escape

from addman.constants import (
    DEFAULT_DISK_TASKS,
    DEFAULT_NET_TASKS,
    MAX_ADDON_TASKS,
)
from addman.exceptions import AddonUpdateError
from addman.log_utils import AddonLog, logger
from addman.utils import build_session, clamp

from .coordinator import AddonUpdater
from .fetcher import CacheFetcher
from .interfaces import Addon, RunContext, UpdateInfo, UpdateOutcome, UpdateStatus
from .task_pool import TaskPool, spawn_task_pool, spawn_task_result_pool


@dataclass
class SyncSummary:
    """Aggregated result of a sync run."""

    statuses: List[UpdateStatus] = field(default_factory=list)
    elapsed: float = 0.0

    def count(self, outcome: UpdateOutcome) -> int:
        return sum(1 for s in self.statuses if s.outcome == outcome)

    @property
    def failed(self) -> List[UpdateStatus]:
        return [s for s in self.statuses if s.outcome == UpdateOutcome.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed


class SyncOrchestrator:
    """
    Update every configured add-on concurrently.

    The orchestrator owns the authoritative `update_info` map. Worker threads
    never touch it; each finished add-on's replacement state is applied here,
    on the consuming thread, after its task has returned.
    """

    def __init__(
        self,
        addons: List[Addon],
        update_info: Dict[str, UpdateInfo],
        addons_dir: str,
        cache_dir: Optional[str] = None,
        net_tasks: int = DEFAULT_NET_TASKS,
        disk_tasks: int = DEFAULT_DISK_TASKS,
        session: Optional[requests.Session] = None,
        github_token: Optional[str] = None,
    ):
        """
        Parameters:
            addons (List[Addon]): Add-ons to update, in configuration order.
            update_info (Dict[str, UpdateInfo]): Persisted update state keyed by add-on name.
            addons_dir (str): Destination root for extracted add-on directories.
            cache_dir (Optional[str]): Cache root for the fetcher; None disables caching.
            net_tasks (int): Concurrent network fetches.
            disk_tasks (int): Concurrent file writes.
            session (Optional[requests.Session]): HTTP session; built from `github_token` when omitted.
            github_token (Optional[str]): Token for authenticated GitHub requests.
        """
        self.addons = addons
        self.update_info = update_info
        self.addons_dir = addons_dir
        self.cache_dir = cache_dir
        self.net_tasks = max(net_tasks, 1)
        self.disk_tasks = max(disk_tasks, 1)
        self.session = session or build_session(self.net_tasks, github_token)

    def run(self) -> SyncSummary:
        """
        Update all add-ons and return the run summary.

        A failing add-on is logged and counted; it never stops the others.
        """
        start = time.monotonic()
        summary = SyncSummary()
        if not self.addons:
            logger.info("No addons configured")
            return summary

        addon_workers = clamp(1, len(self.addons), MAX_ADDON_TASKS)
        net_pool = spawn_task_pool(self.net_tasks, len(self.addons), name="net")
        disk_pool = spawn_task_pool(self.disk_tasks, self.disk_tasks * 4, name="disk")
        addon_pool = spawn_task_result_pool(
            addon_workers, len(self.addons), name="addons"
        )
        pools = (addon_pool, net_pool, disk_pool)

        try:
            fetcher = CacheFetcher(self.session, self.cache_dir, net_pool)
            context = RunContext(
                fetcher=fetcher,
                net_pool=net_pool,
                disk_pool=disk_pool,
                addons_dir=self.addons_dir,
            )
            updater = AddonUpdater(context)

            submitted: Dict[object, Tuple[Addon, AddonLog]] = {}
            for addon in self.addons:
                log = AddonLog(addon.project, addon.short_name)
                future = addon_pool.submit(
                    lambda a=addon, lg=log: updater.update(a, lg)
                )
                submitted[future] = (addon, log)
            addon_pool.close()

            for future in addon_pool.completed():
                addon, log = submitted[future]
                status = self._collect(future, addon, log)
                log.drain()
                self._apply(status)
                logger.debug(
                    "%s finished in %.2fs (%s)",
                    escape(addon.name),
                    status.elapsed,
                    status.outcome.value,
                )
                summary.statuses.append(status)
        except BaseException:
            self._cancel(pools)
            raise
        else:
            for pool in pools:
                pool.close(wait=True)

        summary.elapsed = time.monotonic() - start
        self._log_summary(summary)
        return summary

    def _collect(self, future, addon: Addon, log: AddonLog) -> UpdateStatus:
        """Turn a finished coordinator task into a status, even if it crashed."""
        exc = None if future.cancelled() else future.exception()
        if future.cancelled() or exc is not None:
            error = AddonUpdateError(
                addon.short_name,
                f"unexpected error updating {addon.short_name}",
                exc,
            )
            log.error("%s", error)
            return UpdateStatus(
                addon=addon, outcome=UpdateOutcome.FAILED, error=error, log=log
            )
        return future.result()

    def _apply(self, status: UpdateStatus) -> None:
        if status.new_info is None:
            return
        addon = status.addon
        self.update_info[addon.name] = status.new_info
        addon.update_info = status.new_info

    @staticmethod
    def _cancel(pools: Tuple[TaskPool, ...]) -> None:
        for pool in pools:
            pool.cancel()

    def _log_summary(self, summary: SyncSummary) -> None:
        counts = Counter(s.outcome for s in summary.statuses)
        logger.info(
            "Finished %d addons in %.1fs: %d updated, %d up to date, %d skipped, %d failed",
            len(summary.statuses),
            summary.elapsed,
            counts[UpdateOutcome.UPDATED],
            counts[UpdateOutcome.UP_TO_DATE],
            counts[UpdateOutcome.SKIPPED],
            counts[UpdateOutcome.FAILED],
        )
        for status in summary.failed:
            logger.error(
                "Failed %s: %s", escape(status.addon.name), escape(str(status.error))
            )

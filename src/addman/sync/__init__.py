"""
addman Sync Subsystem

Updates GitHub-hosted add-ons concurrently: every add-on is resolved,
downloaded and extracted by its own coordinator, while network and disk work
is bounded by shared task pools.

Core Components:
- interfaces: Add-on model, update state and decoded GitHub documents
- task_pool: Bounded worker pools
- fetcher: Cache-aware HTTP fetcher
- resolver: Release resolution state machine
- extractor: Selective zip extraction
- coordinator: Per add-on update sequence
- orchestrator: Run-level fan-out and aggregation
- files: Path-safety and atomic file helpers
"""

from .coordinator import AddonUpdater
from .extractor import ZipExtractor, should_skip
from .fetcher import CacheFetcher, fetch_json
from .interfaces import (
    Addon,
    DownloadAsset,
    ReleaseManifest,
    ReleaseStrategy,
    RunContext,
    UpdateInfo,
    UpdateOutcome,
    UpdateStatus,
)
from .orchestrator import SyncOrchestrator, SyncSummary
from .resolver import ReleaseResolver, find_release_asset, find_tagged_ref
from .task_pool import TaskPool, spawn_task_pool, spawn_task_result_pool

__all__ = [
    # Interfaces
    "Addon",
    "DownloadAsset",
    "ReleaseManifest",
    "ReleaseStrategy",
    "RunContext",
    "UpdateInfo",
    "UpdateOutcome",
    "UpdateStatus",
    # Concurrency
    "TaskPool",
    "spawn_task_pool",
    "spawn_task_result_pool",
    # Components
    "CacheFetcher",
    "fetch_json",
    "ReleaseResolver",
    "find_release_asset",
    "find_tagged_ref",
    "ZipExtractor",
    "should_skip",
    "AddonUpdater",
    # Orchestration
    "SyncOrchestrator",
    "SyncSummary",
]

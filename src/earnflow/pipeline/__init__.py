"""Ingestion-and-publish pipeline."""

from earnflow.pipeline.orchestrator import (
    FetchOrchestrator,
    JobKind,
    OrchestratorConfig,
    RunResult,
    RunStatus,
)
from earnflow.pipeline.publisher import PublishedSnapshot, SnapshotPublisher
from earnflow.pipeline.soft_confirm import (
    CalendarFetchResult,
    fetch_with_soft_confirm,
    should_show_no_earnings,
)

__all__ = [
    "CalendarFetchResult",
    "FetchOrchestrator",
    "JobKind",
    "OrchestratorConfig",
    "PublishedSnapshot",
    "RunResult",
    "RunStatus",
    "SnapshotPublisher",
    "fetch_with_soft_confirm",
    "should_show_no_earnings",
]

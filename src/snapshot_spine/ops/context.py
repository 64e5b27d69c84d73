"""
Request-scoped context for operations.

Every operation function receives an :class:`OperationContext` as its first
argument. The context carries the document store, the settings it was
built from, the per-call :class:`ResolutionContext`, caller identity and
the dry-run flag. Collaborator services are optional: operations that need
them fail with ``NOT_CONFIGURED`` when they are absent and the call is not
a dry run.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from snapshot_spine.core.settings import SnapshotSpineSettings, get_settings
from snapshot_spine.orchestration.services import PipelineServices
from snapshot_spine.orchestration.telemetry import TelemetryBus
from snapshot_spine.resolution.context import ResolutionContext
from snapshot_spine.storage import create_store
from snapshot_spine.storage.protocols import DocumentStore


@dataclass
class OperationContext:
    """Context passed to every operation function.

    Attributes:
        store: Document store all reads and writes go through.
        settings: Settings the store and thresholds were built from.
        resolution: Locale and collection overrides for resolvers.
        services: Pipeline collaborators, ``None`` when not wired.
        telemetry: Bus shared by pipeline runs and audits in this process.
        request_id: Unique ID for this operation invocation (auto-generated).
        caller: Origin of the request: ``"cli"``, ``"sdk"`` or ``"scheduler"``.
        dry_run: When ``True``, operations avoid writes and external calls.
        metadata: Arbitrary key/value pairs forwarded to logging.
    """

    store: DocumentStore
    settings: SnapshotSpineSettings = field(default_factory=get_settings)
    resolution: ResolutionContext = field(default_factory=ResolutionContext)
    services: PipelineServices | None = None
    telemetry: TelemetryBus = field(default_factory=TelemetryBus)
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    caller: str = "sdk"
    dry_run: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(
        cls,
        settings: SnapshotSpineSettings | None = None,
        *,
        store: DocumentStore | None = None,
        **kwargs: Any,
    ) -> OperationContext:
        """Build a context whose store and resolution context follow ``settings``."""
        settings = settings or get_settings()
        return cls(
            store=store if store is not None else create_store(settings),
            settings=settings,
            resolution=ResolutionContext.from_settings(settings),
            **kwargs,
        )

    def log_fields(self) -> dict[str, Any]:
        return {"request_id": self.request_id, "caller": self.caller, "dry_run": self.dry_run, **self.metadata}

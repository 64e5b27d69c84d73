"""
snapshot-spine: versioned keyword, demand and signal snapshots.

Subpackages:
- snapshot_spine.core: errors, results, hashing, lifecycle, logging, settings
- snapshot_spine.storage: document store protocol and memory/sqlite backends
- snapshot_spine.snapshots: chunked keyword snapshots and pointer stores
- snapshot_spine.resolution: keyword, demand and signal resolvers
- snapshot_spine.repair: poisoned output and stale snapshot repair
- snapshot_spine.orchestration: pipeline orchestrator, telemetry, heartbeat
- snapshot_spine.audit: integrity auditor
- snapshot_spine.ops / snapshot_spine.cli: operations layer and CLI
"""

__version__ = "0.1.0"

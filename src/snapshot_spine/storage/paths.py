"""
Every document path the snapshot subsystem reads or writes.

Collection roots are module constants so an override (for example the
signals collection in a test session) is passed explicitly through
:class:`~snapshot_spine.resolution.context.ResolutionContext` instead of
being patched globally.
"""

from __future__ import annotations

from snapshot_spine.storage.protocols import join_path

CATEGORY_SNAPSHOTS_ROOT = "mci_category_snapshots"
SNAPSHOTS_GROUP = "snapshots"
CHUNKS = "chunks"
CORPUS_INDEX = "corpus_index"
DEMAND_OUTPUTS_ROOT = "mci_outputs"
SIGNAL_CORPUS_SNAPSHOTS = "signal_corpus_snapshots"
SIGNAL_CORPUS_CHUNKS = "chunks"
REPORT_RUNS = "deepDive_runs"
REPORT_LATEST = "deepDive_latest"
PIPELINE_RUNS = "pipeline_runs"
PIPELINE_LATEST = "pipeline_latest"
PLAYBOOK_RUNS = "playbook_runs"
VOLUME_CACHE = "keyword_volume_cache"
INTEGRITY_PROBE = "_integrity_probe"


def snapshots_collection(
    category_id: str, country: str, language: str, root: str = CATEGORY_SNAPSHOTS_ROOT
) -> str:
    return join_path(root, country, language, category_id, SNAPSHOTS_GROUP)


def snapshot_doc(
    category_id: str, country: str, language: str, snapshot_id: str, root: str = CATEGORY_SNAPSHOTS_ROOT
) -> str:
    return join_path(snapshots_collection(category_id, country, language, root), snapshot_id)


def chunks_collection(parent: str) -> str:
    return join_path(parent, CHUNKS)


def chunk_doc(parent: str, chunk_id: str) -> str:
    return join_path(chunks_collection(parent), chunk_id)


def chunk_id(index: int) -> str:
    return f"chunk_{index:04d}"


def corpus_index_doc(category_id: str, country: str, language: str) -> str:
    return join_path(CORPUS_INDEX, f"{category_id}__{country}__{language}")


def demand_output_id(category_id: str, month: str) -> str:
    return f"out_{category_id}_{month}"


def demand_output_doc(category_id: str, month: str, country: str, language: str) -> str:
    return join_path(DEMAND_OUTPUTS_ROOT, country, language, demand_output_id(category_id, month))


def signal_corpus_id(category_id: str, month: str) -> str:
    return f"sigcorpus_{category_id}_{month}"


def signal_corpus_doc(category_id: str, month: str) -> str:
    return join_path(SIGNAL_CORPUS_SNAPSHOTS, signal_corpus_id(category_id, month))


def report_run_id(category_id: str, month: str, run_id: str) -> str:
    return f"deepDiveV2_{category_id}_{month}_{run_id}"


def report_run_doc(category_id: str, month: str, run_id: str) -> str:
    return join_path(REPORT_RUNS, report_run_id(category_id, month, run_id))


def report_latest_doc(category_id: str, month: str) -> str:
    return join_path(REPORT_LATEST, f"{category_id}_{month}")


def pipeline_run_doc(run_id: str) -> str:
    return join_path(PIPELINE_RUNS, run_id)


def pipeline_latest_doc(category_id: str) -> str:
    return join_path(PIPELINE_LATEST, category_id)


def playbook_doc(playbook_id: str) -> str:
    return join_path(PLAYBOOK_RUNS, playbook_id)


def volume_cache_key(country: str, language: str, location_code: int, normalized: str) -> str:
    return f"{country}__{language}__{location_code}__{normalized}"


def volume_cache_doc(key: str) -> str:
    return join_path(VOLUME_CACHE, key)


def integrity_probe_doc(probe_id: str) -> str:
    return join_path(INTEGRITY_PROBE, probe_id)

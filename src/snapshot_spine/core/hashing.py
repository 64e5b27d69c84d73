"""
Deterministic normalization and SHA-256 fingerprinting.

Three consumers share these helpers: the chunk store (per-chunk integrity
hashes), the pipeline (keyword-base and registry fingerprints recorded per
run for drift detection), and the volume cache (normalized lookup keys).

Manifesto:
    Two keyword spellings that differ only by case, punctuation, accents, or
    spacing are the same keyword. Two keyword sets that differ only by order
    are the same keyword set. The hashes here must agree with both
    statements, across processes and across runs.

    - **Normalize before hashing:** ``normalize_keyword`` is the single rule
    - **Sort before serializing:** Fixed sort keys, fixed field order
    - **Compact JSON:** ``separators=(",", ":")`` so whitespace never matters
    - **Reserved empty hash:** An empty keyword set hashes to 64 zeros

Architecture:
    ::

        rows ──> canonical tuple per row ──> stable sort ──> compact JSON ──> SHA-256
                 (normalized label, anchor,   (anchor,
                  cluster, intent, language,   normalized,
                  family id)                   intent)

        categories ──> sort by id ──> sub-groups by name ──> anchors A-Z ──> SHA-256

Examples:
    >>> normalize_keyword("  Anti-Dandruff   SHAMPOO!! ")
    'antidandruff shampoo'
    >>> keyword_fingerprint([]) == EMPTY_FINGERPRINT
    True

Tags:
    hashing, sha256, fingerprint, normalization, drift, snapshot-spine
"""

from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

EMPTY_FINGERPRINT = "0" * 64

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def canonical_json(value: Any) -> str:
    """Compact JSON with insertion-ordered keys and no ASCII escaping."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def sha256_json(value: Any) -> str:
    """SHA-256 of the canonical JSON rendering of ``value``."""
    return sha256_hex(canonical_json(value))


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Short deterministic hash of pipe-joined values.

    Used for probe ids and cache keys where a full 64-char digest is noise.
    Order matters: ``compute_hash("a", "b") != compute_hash("b", "a")``.
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def normalize_keyword(raw: str | None) -> str:
    """
    Strict keyword normalization.

    Lowercase, trim, NFKD-decompose and drop combining marks, remove every
    character outside ``[a-z0-9\\s]``, then collapse whitespace runs to one
    space. Trimming happens before symbol removal, so ``"! oil"`` becomes
    ``" oil"``; stored cache keys depend on this exact order.
    """
    if not raw:
        return ""
    text = unicodedata.normalize("NFKD", raw.lower().strip())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _NON_ALNUM.sub("", text)
    return _WHITESPACE.sub(" ", text)


def _field(row: Mapping[str, Any] | Any, name: str, default: Any = None) -> Any:
    if isinstance(row, Mapping):
        return row.get(name, default)
    return getattr(row, name, default)


def keyword_fingerprint(rows: Iterable[Mapping[str, Any] | Any] | None) -> str:
    """
    Order- and cosmetics-invariant SHA-256 over a keyword set.

    Each row contributes ``keywordCanonical`` (normalized), ``anchor``,
    ``cluster`` (or None), ``intent``, ``language`` (default ``"English"``)
    and ``canonicalFamilyId``. Rows may be mappings or attribute objects.
    """
    prepared = [
        {
            "keywordCanonical": normalize_keyword(_field(row, "keywordCanonical", "")),
            "anchor": _field(row, "anchor", "") or "",
            "cluster": _field(row, "cluster") or None,
            "intent": _field(row, "intent", "") or "",
            "language": _field(row, "language") or "English",
            "canonicalFamilyId": _field(row, "canonicalFamilyId", "") or "",
        }
        for row in (rows or [])
    ]
    if not prepared:
        return EMPTY_FINGERPRINT

    prepared.sort(key=lambda r: (r["anchor"], r["keywordCanonical"], r["intent"]))
    return sha256_json(prepared)


@dataclass(frozen=True)
class SubCategory:
    name: str
    anchors: tuple[str, ...] = ()


@dataclass(frozen=True)
class CategoryDefinition:
    """One entry of the static category taxonomy."""

    id: str
    category: str
    anchors: tuple[str, ...] = ()
    sub_categories: tuple[SubCategory, ...] = ()


def registry_fingerprint(categories: Iterable[CategoryDefinition]) -> str:
    """SHA-256 over the structural shape of the category taxonomy."""
    structural = [
        {
            "id": cat.id,
            "category": cat.category,
            "subCategories": sorted(
                ({"name": sc.name, "anchors": sorted(sc.anchors)} for sc in cat.sub_categories),
                key=lambda sc: sc["name"],
            ),
            "anchors": sorted(cat.anchors),
        }
        for cat in categories
    ]
    structural.sort(key=lambda c: c["id"])
    return sha256_json(structural)


@dataclass(frozen=True, slots=True)
class DriftCheck:
    """Comparison of a fresh fingerprint against a previously recorded one."""

    current: str
    previous: str | None

    @property
    def drifted(self) -> bool:
        return self.previous is not None and self.previous != self.current

    def describe(self) -> str:
        if self.previous is None:
            return f"No previous fingerprint recorded (current={self.current[:12]})"
        if self.drifted:
            return f"Fingerprint changed {self.previous[:12]} -> {self.current[:12]}"
        return f"Fingerprint stable ({self.current[:12]})"


__all__ = [
    "EMPTY_FINGERPRINT",
    "canonical_json",
    "sha256_hex",
    "sha256_json",
    "compute_hash",
    "normalize_keyword",
    "keyword_fingerprint",
    "SubCategory",
    "CategoryDefinition",
    "registry_fingerprint",
    "DriftCheck",
]

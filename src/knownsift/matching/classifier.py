"""
Classification Engine - assign one outcome to every candidate record.

Outcomes:
    empty_hash       neither MD5 nor SHA-1 present
    unknown          no reference row matches the record's hashes
    known            first record of the run matching a given hash key
    duplicate_known  later records matching an already-known hash key

A record matches when its SHA-1 is in the reference SHA-1 column or its MD5
is in the reference MD5 column. The hash key used for duplicate detection is
the SHA-1 when present, else the MD5.

Classification runs in two steps: ``match_chunk`` (database lookup, run by
workers) and ``resolve`` (duplicate detection, run by the single consumer in
input order).
"""
from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import List, Sequence, Set, Tuple

from ..core.enums import Classification, HashColumn
from ..file_list.parser import CandidateRecord
from ..reference.schema import ReferenceSchema
from .lookup import HashLookup
from .seen import SeenHashSet

__all__ = ["ChunkMatches", "ChunkResult", "ClassificationEngine"]


@dataclass
class ChunkMatches:
    """Reference lookup outcome of one chunk: (record, matched) in input order."""

    index: int
    items: List[Tuple[CandidateRecord, bool]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class ChunkResult:
    """Classified records of one chunk, in the chunk's input order."""

    index: int
    items: List[Tuple[CandidateRecord, Classification]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)


class ClassificationEngine:
    """Classify chunks of records against the reference store."""

    def __init__(self, schema: ReferenceSchema, seen: SeenHashSet, lookup: HashLookup):
        """
        Args:
            schema: Resolved reference schema
            seen: Run-wide set of hash keys already classified known
            lookup: Batched membership query helper
        """
        self.schema = schema
        self.seen = seen
        self.lookup = lookup

    def _known_hashes(
        self,
        conn: sqlite3.Connection,
        records: Sequence[CandidateRecord],
    ) -> Tuple[Set[str], Set[str]]:
        known_sha1: Set[str] = set()
        known_md5: Set[str] = set()

        sha1_column = self.schema.hash_columns.get(HashColumn.SHA1)
        if sha1_column:
            known_sha1 = self.lookup.find_existing(
                conn, sha1_column, {r.sha1 for r in records if r.sha1}
            )

        md5_column = self.schema.hash_columns.get(HashColumn.MD5)
        if md5_column:
            # Records already matched on SHA-1 need no MD5 probe
            known_md5 = self.lookup.find_existing(
                conn, md5_column, {r.md5 for r in records if r.md5 and r.sha1 not in known_sha1}
            )

        return known_sha1, known_md5

    def match_chunk(
        self,
        conn: sqlite3.Connection,
        records: Sequence[CandidateRecord],
        index: int = 0,
    ) -> ChunkMatches:
        """
        Look up one chunk with a single membership query per hash column.

        Touches no run-wide state, so it is safe to call from worker threads.

        Args:
            conn: Read connection owned by the calling worker
            records: Records of the chunk
            index: Chunk sequence number (input order)

        Raises:
            DatabaseQueryFailedError: If the reference lookup keeps failing
        """
        known_sha1, known_md5 = self._known_hashes(conn, records)

        matches = ChunkMatches(index=index)
        for record in records:
            matched = bool(
                (record.sha1 and record.sha1 in known_sha1)
                or (record.md5 and record.md5 in known_md5)
            )
            matches.items.append((record, matched))
        return matches

    def resolve(self, matches: ChunkMatches) -> ChunkResult:
        """
        Turn lookup results into classifications.

        Chunks must be resolved one at a time in index order; the first
        record of the run carrying a known hash key is the one classified
        known.
        """
        result = ChunkResult(index=matches.index)
        for record, matched in matches.items:
            result.items.append((record, self.decide(record, matched)))
        return result

    def decide(self, record: CandidateRecord, matched: bool) -> Classification:
        """Outcome of one record given whether the reference store has it."""
        if not record.has_hash:
            return Classification.EMPTY_HASH
        if not matched:
            return Classification.UNKNOWN
        if self.seen.add_if_absent(record.hash_key):
            return Classification.KNOWN
        return Classification.DUPLICATE_KNOWN

    def classify_chunk(
        self,
        conn: sqlite3.Connection,
        records: Sequence[CandidateRecord],
        index: int = 0,
    ) -> ChunkResult:
        """Look up and resolve one chunk on the calling thread."""
        return self.resolve(self.match_chunk(conn, records, index))

    def classify_record(self, conn: sqlite3.Connection, record: CandidateRecord) -> Classification:
        """Classify a single record (a chunk of one)."""
        return self.classify_chunk(conn, [record]).items[0][1]

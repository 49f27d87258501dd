from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Set

from ..core.enums import Classification, RunStatus


def _pct(part: int, whole: int) -> float:
    return (part / whole) * 100.0 if whole else 0.0


@dataclass
class RunSummary:
    """Counts of one classification run.

    ``total`` covers classified records only, so
    ``known + unknown + duplicates + empty == total`` always holds. Malformed,
    filtered and errored rows are tracked beside it.
    """

    total: int = 0
    known: int = 0
    unknown: int = 0
    duplicates: int = 0
    empty: int = 0
    malformed: int = 0
    filtered: int = 0
    errored: int = 0
    elapsed_seconds: float = 0.0
    status: RunStatus = RunStatus.COMPLETE
    workers: int = 1
    failed_chunks: List[int] = field(default_factory=list)
    _hash_keys: Set[str] = field(default_factory=set, repr=False)

    def record(self, classification: Classification, hash_key: str = "") -> None:
        self.total += 1
        if classification is Classification.KNOWN:
            self.known += 1
        elif classification is Classification.UNKNOWN:
            self.unknown += 1
        elif classification is Classification.DUPLICATE_KNOWN:
            self.duplicates += 1
        else:
            self.empty += 1
        if hash_key:
            self._hash_keys.add(hash_key)

    @property
    def unique_hashes(self) -> int:
        """Distinct hash keys among classified records."""
        return len(self._hash_keys)

    @property
    def is_consistent(self) -> bool:
        return self.known + self.unknown + self.duplicates + self.empty == self.total

    @property
    def records_per_second(self) -> float:
        return self.total / self.elapsed_seconds if self.elapsed_seconds > 0 else 0.0

    def as_dict(self) -> dict:
        return {
            "status": str(self.status),
            "total": self.total,
            "known": self.known,
            "unknown": self.unknown,
            "duplicates": self.duplicates,
            "empty": self.empty,
            "malformed": self.malformed,
            "filtered": self.filtered,
            "errored": self.errored,
            "unique_hashes": self.unique_hashes,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }

    def format_report(self) -> str:
        """Human-readable summary printed at the end of a run."""
        lines = ["Detailed Summary:"]
        if self.status is not RunStatus.COMPLETE:
            lines.append(f"  Status: {self.status.upper()} - output files are incomplete")
        lines += [
            f"  Total records processed: {self.total}",
            f"  Unique hash values: {self.unique_hashes} ({_pct(self.unique_hashes, self.total):.1f}%)",
            f"  Known software: {self.known} ({_pct(self.known, self.total):.1f}%)",
            f"  Unknown software: {self.unknown} ({_pct(self.unknown, self.total):.1f}%)",
            f"  Duplicate known hashes: {self.duplicates} ({_pct(self.duplicates, self.total):.1f}%)",
            f"  Records with empty hashes: {self.empty} ({_pct(self.empty, self.total):.1f}%)",
        ]
        if self.filtered:
            lines.append(f"  Excluded by extension filter: {self.filtered}")
        if self.malformed:
            lines.append(f"  Malformed rows skipped: {self.malformed}")
        if self.errored:
            lines.append(
                f"  Records lost to query errors: {self.errored} "
                f"({len(self.failed_chunks)} chunk(s))"
            )
        lines += [
            f"  Processing speed: {self.records_per_second:.0f} records/second",
            f"  Total processing time: {self.elapsed_seconds:.2f} seconds",
        ]
        return "\n".join(lines)

"""Record types shared by the merger, the scorers and the aggregator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class AggregationMethod(StrEnum):
    BORDA = "borda"
    SHIMURA = "shimura"
    MODAL = "modal"
    MFO = "mfo"
    MBV = "mbv"
    OWA = "owa"
    BIASED = "biased"


@dataclass(frozen=True)
class RankedEntry:
    """One result as reported by one source, with its 1-based position."""

    source_name: str
    native_rank: int
    url: str
    title: str = ""
    snippet: str = ""


@dataclass(frozen=True)
class SourceResult:
    """Everything a single source returned for a query.

    A failed source carries no entries and a human-readable ``error``.
    """

    source_name: str
    entries: tuple[RankedEntry, ...] = ()
    error: str | None = None

    @property
    def count(self) -> int:
        return len(self.entries)


@dataclass
class CanonicalDocument:
    normalized_key: str
    url: str
    title: str = ""
    snippet: str = ""
    source_ranks: dict[str, int] = field(default_factory=dict)


@dataclass
class FeedbackSignals:
    """Implicit feedback gathered for one search result in one session.

    ``click_order`` is ``None`` until the result is clicked.
    ``copy_paste_chars`` accumulates; every other field is overwritten.
    """

    click_order: int | None = None
    dwell_time_ms: int = 0
    printed: bool = False
    saved: bool = False
    bookmarked: bool = False
    emailed: bool = False
    copy_paste_chars: int = 0

    def record_click(self, order: int) -> None:
        if order < 1:
            raise ValueError("Click order must be >= 1")
        self.click_order = int(order)

    def record_dwell(self, dwell_time_ms: int) -> None:
        if dwell_time_ms < 0:
            raise ValueError("Dwell time cannot be negative")
        self.dwell_time_ms = int(dwell_time_ms)

    def mark_printed(self) -> None:
        self.printed = True

    def mark_saved(self) -> None:
        self.saved = True

    def mark_bookmarked(self) -> None:
        self.bookmarked = True

    def mark_emailed(self) -> None:
        self.emailed = True

    def add_copy_paste(self, chars: int) -> None:
        if chars < 0:
            raise ValueError("Copied character count cannot be negative")
        self.copy_paste_chars += int(chars)


@dataclass(frozen=True)
class WeightProfile:
    w_v: float = 1.0
    w_t: float = 1.0
    w_p: float = 1.0
    w_s: float = 1.0
    w_b: float = 1.0
    w_e: float = 1.0
    w_c: float = 1.0
    reading_speed: float = 10.0
    default_method: AggregationMethod = AggregationMethod.BORDA

    def __post_init__(self) -> None:
        for name in ("w_v", "w_t", "w_p", "w_s", "w_b", "w_e", "w_c"):
            if getattr(self, name) < 0:
                raise ValueError(f"Weight {name} must be non-negative")


@dataclass(frozen=True)
class ScoredDocument:
    document: CanonicalDocument
    importance: float


@dataclass(frozen=True)
class SQMRecord:
    user_id: str
    source_name: str
    score: float
    sample_count: int


@dataclass
class LearningIndexEntry:
    user_id: str
    url_key: str
    url: str
    title: str = ""
    snippet: str = ""
    learned_score: float = 0.0
    matched_queries: set[str] = field(default_factory=set)

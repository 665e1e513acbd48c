import json
import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from metasearch.data.schema import SCHEMA_SQL
from metasearch.ranking.learning_index import merge_entry
from metasearch.ranking.merger import normalize_url
from metasearch.ranking.quality import running_average
from metasearch.ranking.types import (
    AggregationMethod,
    CanonicalDocument,
    FeedbackSignals,
    LearningIndexEntry,
    RankedEntry,
    SQMRecord,
    WeightProfile,
)

logger = logging.getLogger(__name__)


class Repository:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        self._conn.close()

    def _init_schema(self) -> None:
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    @contextmanager
    def _write_transaction(self) -> Iterator[None]:
        """Serialize a read-modify-write against other connections.

        ``BEGIN IMMEDIATE`` takes the database write lock before the read, so
        two concurrent upserts of the same key cannot interleave.
        """
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except Exception:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()

    # -- profiles ------------------------------------------------------------

    def get_weight_profile(self, user_id: str) -> WeightProfile | None:
        cur = self._conn.execute("SELECT * FROM profiles WHERE user_id = ?", (user_id,))
        row = cur.fetchone()
        if row is None:
            return None
        try:
            method = AggregationMethod(row["default_aggregation_method"])
        except ValueError:
            method = AggregationMethod.BORDA
        return WeightProfile(
            w_v=row["weight_v"],
            w_t=row["weight_t"],
            w_p=row["weight_p"],
            w_s=row["weight_s"],
            w_b=row["weight_b"],
            w_e=row["weight_e"],
            w_c=row["weight_c"],
            reading_speed=row["reading_speed"],
            default_method=method,
        )

    def save_weight_profile(self, user_id: str, profile: WeightProfile) -> None:
        self._conn.execute(
            """
            INSERT INTO profiles(
                user_id, weight_v, weight_t, weight_p, weight_s, weight_b,
                weight_e, weight_c, reading_speed, default_aggregation_method)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                weight_v = excluded.weight_v,
                weight_t = excluded.weight_t,
                weight_p = excluded.weight_p,
                weight_s = excluded.weight_s,
                weight_b = excluded.weight_b,
                weight_e = excluded.weight_e,
                weight_c = excluded.weight_c,
                reading_speed = excluded.reading_speed,
                default_aggregation_method = excluded.default_aggregation_method,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                user_id,
                profile.w_v,
                profile.w_t,
                profile.w_p,
                profile.w_s,
                profile.w_b,
                profile.w_e,
                profile.w_c,
                profile.reading_speed,
                profile.default_method.value,
            ),
        )
        self._conn.commit()

    # -- search sessions -----------------------------------------------------

    def create_session(
        self, user_id: str, query: str, method: AggregationMethod
    ) -> int:
        cur = self._conn.execute(
            "INSERT INTO search_history(user_id, query, aggregation_method) "
            "VALUES (?, ?, ?)",
            (user_id, query, method.value),
        )
        self._conn.commit()
        assert cur.lastrowid is not None
        return int(cur.lastrowid)

    def get_session(self, session_id: int) -> dict | None:
        cur = self._conn.execute(
            "SELECT * FROM search_history WHERE id = ?", (session_id,)
        )
        row = cur.fetchone()
        return dict(row) if row else None

    def add_results(self, session_id: int, entries: Iterable[RankedEntry]) -> list[int]:
        """Store every per-source entry of a session. Returns the new row ids."""
        ids: list[int] = []
        for entry in entries:
            cur = self._conn.execute(
                """
                INSERT INTO search_results(
                    search_history_id, engine, title, url, url_key,
                    snippet, original_rank)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    entry.source_name,
                    entry.title,
                    entry.url,
                    normalize_url(entry.url),
                    entry.snippet,
                    entry.native_rank,
                ),
            )
            assert cur.lastrowid is not None
            ids.append(int(cur.lastrowid))
        self._conn.commit()
        logger.debug("Stored %d result(s) for session %d", len(ids), session_id)
        return ids

    def set_aggregated_ranks(self, session_id: int, ranks: dict[str, int]) -> None:
        """Record the displayed position of each document, keyed by url key."""
        self._conn.executemany(
            "UPDATE search_results SET aggregated_rank = ? "
            "WHERE search_history_id = ? AND url_key = ?",
            [(rank, session_id, key) for key, rank in ranks.items()],
        )
        self._conn.commit()

    def get_result(self, result_id: int) -> dict | None:
        cur = self._conn.execute(
            "SELECT * FROM search_results WHERE id = ?", (result_id,)
        )
        row = cur.fetchone()
        return dict(row) if row else None

    def list_session_results(self, session_id: int) -> list[dict]:
        cur = self._conn.execute(
            "SELECT * FROM search_results WHERE search_history_id = ? ORDER BY id",
            (session_id,),
        )
        return [dict(row) for row in cur.fetchall()]

    # -- feedback ------------------------------------------------------------

    @staticmethod
    def _signals_from_row(row: sqlite3.Row | None) -> FeedbackSignals:
        if row is None:
            return FeedbackSignals()
        return FeedbackSignals(
            click_order=row["click_order"],
            dwell_time_ms=int(row["dwell_time_ms"] or 0),
            printed=bool(row["printed"]),
            saved=bool(row["saved"]),
            bookmarked=bool(row["bookmarked"]),
            emailed=bool(row["emailed"]),
            copy_paste_chars=int(row["copy_paste_chars"] or 0),
        )

    def _fetch_feedback_row(self, user_id: str, result_id: int) -> sqlite3.Row | None:
        cur = self._conn.execute(
            "SELECT * FROM user_feedback WHERE user_id = ? AND search_result_id = ?",
            (user_id, result_id),
        )
        return cur.fetchone()

    def _write_feedback(
        self, user_id: str, result_id: int, signals: FeedbackSignals
    ) -> None:
        self._conn.execute(
            """
            INSERT INTO user_feedback(
                user_id, search_result_id, click_order, dwell_time_ms,
                printed, saved, bookmarked, emailed, copy_paste_chars)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, search_result_id) DO UPDATE SET
                click_order = excluded.click_order,
                dwell_time_ms = excluded.dwell_time_ms,
                printed = excluded.printed,
                saved = excluded.saved,
                bookmarked = excluded.bookmarked,
                emailed = excluded.emailed,
                copy_paste_chars = excluded.copy_paste_chars,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                user_id,
                result_id,
                signals.click_order,
                signals.dwell_time_ms,
                int(signals.printed),
                int(signals.saved),
                int(signals.bookmarked),
                int(signals.emailed),
                signals.copy_paste_chars,
            ),
        )

    def get_feedback(self, user_id: str, result_id: int) -> FeedbackSignals | None:
        row = self._fetch_feedback_row(user_id, result_id)
        return self._signals_from_row(row) if row else None

    def update_feedback(
        self,
        user_id: str,
        result_id: int,
        update: Callable[[FeedbackSignals], None],
    ) -> FeedbackSignals:
        """Apply ``update`` to the stored signals of a result and persist them.

        Missing feedback starts from empty signals. Runs as one write
        transaction.
        """
        with self._write_transaction():
            signals = self._signals_from_row(self._fetch_feedback_row(user_id, result_id))
            update(signals)
            self._write_feedback(user_id, result_id, signals)
        return signals

    def record_click(self, user_id: str, result_id: int) -> FeedbackSignals:
        """Give the result the next click order of its session for this user."""
        with self._write_transaction():
            cur = self._conn.execute(
                """
                SELECT COALESCE(MAX(f.click_order), 0) AS last_click
                FROM user_feedback f
                JOIN search_results r ON r.id = f.search_result_id
                WHERE f.user_id = ? AND r.search_history_id = (
                    SELECT search_history_id FROM search_results WHERE id = ?
                )
                """,
                (user_id, result_id),
            )
            last_click = int(cur.fetchone()["last_click"])
            signals = self._signals_from_row(self._fetch_feedback_row(user_id, result_id))
            signals.record_click(last_click + 1)
            self._write_feedback(user_id, result_id, signals)
        return signals

    def list_session_feedback(
        self, user_id: str, session_id: int
    ) -> list[tuple[dict, FeedbackSignals]]:
        """Feedback of ``user_id`` for a session, paired with its result row."""
        cur = self._conn.execute(
            """
            SELECT r.id AS result_id, r.engine, r.url, r.url_key, r.title,
                   r.snippet, r.original_rank,
                   f.click_order, f.dwell_time_ms, f.printed, f.saved,
                   f.bookmarked, f.emailed, f.copy_paste_chars
            FROM user_feedback f
            JOIN search_results r ON r.id = f.search_result_id
            WHERE f.user_id = ? AND r.search_history_id = ?
            ORDER BY r.id
            """,
            (user_id, session_id),
        )
        pairs: list[tuple[dict, FeedbackSignals]] = []
        for row in cur.fetchall():
            result = {
                key: row[key]
                for key in (
                    "result_id",
                    "engine",
                    "url",
                    "url_key",
                    "title",
                    "snippet",
                    "original_rank",
                )
            }
            pairs.append((result, self._signals_from_row(row)))
        return pairs

    # -- search quality measures ---------------------------------------------

    @staticmethod
    def _sqm_from_row(row: sqlite3.Row) -> SQMRecord:
        return SQMRecord(
            user_id=row["user_id"],
            source_name=row["engine"],
            score=float(row["sqm_score"]),
            sample_count=int(row["query_count"]),
        )

    def get_sqm(self, user_id: str, source_name: str) -> SQMRecord | None:
        cur = self._conn.execute(
            "SELECT * FROM search_quality_measures WHERE user_id = ? AND engine = ?",
            (user_id, source_name),
        )
        row = cur.fetchone()
        return self._sqm_from_row(row) if row else None

    def list_sqm(self, user_id: str) -> list[SQMRecord]:
        cur = self._conn.execute(
            "SELECT * FROM search_quality_measures WHERE user_id = ? ORDER BY engine",
            (user_id,),
        )
        return [self._sqm_from_row(row) for row in cur.fetchall()]

    def sqm_weights(self, user_id: str) -> dict[str, float]:
        return {record.source_name: record.score for record in self.list_sqm(user_id)}

    def record_sqm(self, user_id: str, source_name: str, rho: float) -> SQMRecord:
        """Fold a new correlation into the running average for (user, source)."""
        with self._write_transaction():
            cur = self._conn.execute(
                "SELECT sqm_score, query_count FROM search_quality_measures "
                "WHERE user_id = ? AND engine = ?",
                (user_id, source_name),
            )
            row = cur.fetchone()
            old_score = float(row["sqm_score"]) if row else 0.0
            old_count = int(row["query_count"]) if row else 0
            score, count = running_average(old_score, old_count, rho)
            self._conn.execute(
                """
                INSERT INTO search_quality_measures(user_id, engine, sqm_score, query_count)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, engine) DO UPDATE SET
                    sqm_score = excluded.sqm_score,
                    query_count = excluded.query_count,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (user_id, source_name, score, count),
            )
        return SQMRecord(user_id, source_name, score, count)

    # -- learning index ------------------------------------------------------

    @staticmethod
    def _learning_from_row(row: sqlite3.Row) -> LearningIndexEntry:
        return LearningIndexEntry(
            user_id=row["user_id"],
            url_key=row["url_key"],
            url=row["url"],
            title=row["title"] or "",
            snippet=row["snippet"] or "",
            learned_score=float(row["learned_score"]),
            matched_queries=set(json.loads(row["query_matches"] or "[]")),
        )

    def get_learning_entry(self, user_id: str, url: str) -> LearningIndexEntry | None:
        cur = self._conn.execute(
            "SELECT * FROM feedback_learning_index WHERE user_id = ? AND url_key = ?",
            (user_id, normalize_url(url)),
        )
        row = cur.fetchone()
        return self._learning_from_row(row) if row else None

    def list_learning_entries(
        self, user_id: str, limit: int | None = None
    ) -> list[LearningIndexEntry]:
        """The user's entries, highest learned score first."""
        query = (
            "SELECT * FROM feedback_learning_index WHERE user_id = ? "
            "ORDER BY learned_score DESC, id ASC"
        )
        params: tuple = (user_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (user_id, limit)
        cur = self._conn.execute(query, params)
        return [self._learning_from_row(row) for row in cur.fetchall()]

    def merge_learning_entry(
        self,
        user_id: str,
        document: CanonicalDocument,
        importance: float,
        query_text: str = "",
    ) -> LearningIndexEntry | None:
        """Upsert the (user, document) entry with one importance observation.

        Returns the stored entry, or ``None`` if nothing was learned.
        """
        with self._write_transaction():
            cur = self._conn.execute(
                "SELECT * FROM feedback_learning_index WHERE user_id = ? AND url_key = ?",
                (user_id, document.normalized_key),
            )
            row = cur.fetchone()
            existing = self._learning_from_row(row) if row else None
            entry = merge_entry(existing, user_id, document, importance, query_text)
            if entry is None:
                return None
            self._conn.execute(
                """
                INSERT INTO feedback_learning_index(
                    user_id, url_key, url, title, snippet, learned_score, query_matches)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, url_key) DO UPDATE SET
                    url = excluded.url,
                    title = excluded.title,
                    snippet = excluded.snippet,
                    learned_score = excluded.learned_score,
                    query_matches = excluded.query_matches,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    entry.user_id,
                    entry.url_key,
                    entry.url,
                    entry.title,
                    entry.snippet,
                    entry.learned_score,
                    json.dumps(sorted(entry.matched_queries)),
                ),
            )
        return entry

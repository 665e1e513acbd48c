SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS profiles (
    user_id TEXT PRIMARY KEY,
    weight_v REAL NOT NULL DEFAULT 1.0,
    weight_t REAL NOT NULL DEFAULT 1.0,
    weight_p REAL NOT NULL DEFAULT 1.0,
    weight_s REAL NOT NULL DEFAULT 1.0,
    weight_b REAL NOT NULL DEFAULT 1.0,
    weight_e REAL NOT NULL DEFAULT 1.0,
    weight_c REAL NOT NULL DEFAULT 1.0,
    reading_speed REAL NOT NULL DEFAULT 10.0,
    default_aggregation_method TEXT NOT NULL DEFAULT 'borda',
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS search_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    query TEXT NOT NULL,
    aggregation_method TEXT NOT NULL DEFAULT 'borda',
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS search_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    search_history_id INTEGER NOT NULL,
    engine TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    url TEXT NOT NULL,
    url_key TEXT NOT NULL,
    snippet TEXT NOT NULL DEFAULT '',
    original_rank INTEGER NOT NULL,
    aggregated_rank INTEGER,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(search_history_id) REFERENCES search_history(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_search_results_session
    ON search_results(search_history_id);

CREATE TABLE IF NOT EXISTS user_feedback (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    search_result_id INTEGER NOT NULL,
    click_order INTEGER,
    dwell_time_ms INTEGER NOT NULL DEFAULT 0,
    printed INTEGER NOT NULL DEFAULT 0,
    saved INTEGER NOT NULL DEFAULT 0,
    bookmarked INTEGER NOT NULL DEFAULT 0,
    emailed INTEGER NOT NULL DEFAULT 0,
    copy_paste_chars INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(user_id, search_result_id),
    FOREIGN KEY(search_result_id) REFERENCES search_results(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS search_quality_measures (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    engine TEXT NOT NULL,
    sqm_score REAL NOT NULL DEFAULT 0.0,
    query_count INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(user_id, engine)
);

CREATE TABLE IF NOT EXISTS feedback_learning_index (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    url_key TEXT NOT NULL,
    url TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    snippet TEXT NOT NULL DEFAULT '',
    learned_score REAL NOT NULL DEFAULT 0.0,
    query_matches TEXT NOT NULL DEFAULT '[]',
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(user_id, url_key)
);
"""

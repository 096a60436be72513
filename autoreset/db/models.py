"""SQL schema definitions for autoreset."""

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS reset_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account TEXT NOT NULL,
    checkpoint TEXT NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    total INTEGER NOT NULL,
    eligible INTEGER NOT NULL,
    success INTEGER NOT NULL,
    failed INTEGER NOT NULL,
    skipped INTEGER NOT NULL,
    scheduled INTEGER NOT NULL,
    delayed INTEGER NOT NULL DEFAULT 0,
    error TEXT,
    details_json TEXT
);

CREATE TABLE IF NOT EXISTS execution_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    checkpoint TEXT NOT NULL,
    run_date TEXT NOT NULL,
    status TEXT NOT NULL,
    recorded_at TEXT NOT NULL,
    result_json TEXT,
    error TEXT
);

CREATE INDEX IF NOT EXISTS idx_history_started
    ON reset_history(started_at);

CREATE INDEX IF NOT EXISTS idx_execution_checkpoint_date
    ON execution_log(checkpoint, run_date, status);
"""

"""SQL queries for the healing event store."""

# Schema queries. Identifier columns are declared without a type so that
# integer and text identifiers are stored and returned unchanged.
CREATE_HEALING_EVENTS_TABLE = """
    CREATE TABLE IF NOT EXISTS healing_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        test_result_id,
        test_case_id NOT NULL,
        object_id,
        step_index INTEGER NOT NULL,
        failed_locator TEXT NOT NULL,
        healed_locator TEXT NOT NULL,
        strategy TEXT,
        confidence REAL NOT NULL,
        auto_applied INTEGER NOT NULL DEFAULT 0,
        approved INTEGER,
        approved_by TEXT,
        approved_at TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL
    )
"""

CREATE_HEALING_EVENTS_INDEXES = (
    """
    CREATE INDEX IF NOT EXISTS idx_healing_events_test_case
    ON healing_events(test_case_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_healing_events_failed_locator
    ON healing_events(failed_locator)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_healing_events_strategy
    ON healing_events(strategy)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_healing_events_approval
    ON healing_events(auto_applied, approved)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_healing_events_created_at
    ON healing_events(created_at)
    """,
)

# Data manipulation queries
INSERT_HEALING_EVENT = """
    INSERT INTO healing_events (
        test_result_id, test_case_id, object_id, step_index,
        failed_locator, healed_locator, strategy, confidence,
        auto_applied, approved, approved_by, approved_at,
        metadata, created_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

UPDATE_HEALING_APPROVAL = """
    UPDATE healing_events
    SET approved = ?, approved_by = ?, approved_at = ?
    WHERE id = ? AND auto_applied = 0 AND approved IS NULL
"""

SELECT_HEALING_EVENT_COLUMNS = """
    SELECT id, test_result_id, test_case_id, object_id, step_index,
           failed_locator, healed_locator, strategy, confidence,
           auto_applied, approved, approved_by, approved_at,
           metadata, created_at
    FROM healing_events
"""

SELECT_HEALING_EVENT_BY_ID = SELECT_HEALING_EVENT_COLUMNS + " WHERE id = ?"

# Statistics queries; each takes the window start as its only parameter
SELECT_TOTALS_SINCE = """
    SELECT COUNT(*),
           COALESCE(SUM(CASE WHEN auto_applied = 1 OR approved = 1 THEN 1 ELSE 0 END), 0),
           COALESCE(SUM(CASE WHEN auto_applied = 0 AND approved IS NULL THEN 1 ELSE 0 END), 0)
    FROM healing_events
    WHERE created_at >= ?
"""

SELECT_STRATEGY_STATS_SINCE = """
    SELECT strategy,
           COUNT(*),
           SUM(CASE WHEN auto_applied = 1 OR approved = 1 THEN 1 ELSE 0 END),
           AVG(confidence),
           AVG(CAST(json_extract(metadata, '$.execution_time_ms') AS REAL))
    FROM healing_events
    WHERE created_at >= ? AND strategy IS NOT NULL
    GROUP BY strategy
"""

SELECT_MOST_HEALED_OBJECTS_SINCE = """
    SELECT object_id, COUNT(*) AS heal_count
    FROM healing_events
    WHERE created_at >= ?
      AND object_id IS NOT NULL
      AND (auto_applied = 1 OR approved = 1)
    GROUP BY object_id
    ORDER BY heal_count DESC, MAX(created_at) DESC
    LIMIT ?
"""

SELECT_RECENT_EVENTS_SINCE = SELECT_HEALING_EVENT_COLUMNS + """
    WHERE created_at >= ?
    ORDER BY created_at DESC, id DESC
    LIMIT ?
"""

# IS matches NULL object ids as well as equal ones
SELECT_HISTORY_SINCE = SELECT_HEALING_EVENT_COLUMNS + """
    WHERE failed_locator = ? AND object_id IS ? AND created_at >= ?
    ORDER BY created_at DESC, id DESC
"""

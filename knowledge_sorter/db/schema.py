"""SQLite schema for the Knowledge Sorter datastore."""

# Typed stores the router writes into and the sweep deduplicates
TYPED_TABLES: tuple[str, ...] = ("knowledge", "todos", "bugs", "decisions", "lessons")

# Tables a purge request may target
PURGEABLE_TABLES: tuple[str, ...] = TYPED_TABLES + ("messages", "sessions", "extractions")

_TYPED_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS {table} (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        category TEXT,
        project_path TEXT,
        project_id TEXT,
        client_id TEXT,
        platform_id TEXT,
        scope TEXT NOT NULL DEFAULT '',
        title_key TEXT NOT NULL DEFAULT '',
        importance INTEGER DEFAULT 5,
        priority TEXT DEFAULT 'medium',
        status TEXT,
        tags TEXT DEFAULT '[]',
        source TEXT,
        source_session_id TEXT,
        extraction_id TEXT,
        attribution_confidence REAL NOT NULL DEFAULT 0,
        attribution_source TEXT,
        metadata TEXT DEFAULT '{{}}',
        created_at REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0),
        updated_at REAL
    );
    CREATE INDEX IF NOT EXISTS idx_{table}_dedup ON {table}(scope, title_key);
    CREATE INDEX IF NOT EXISTS idx_{table}_project ON {table}(project_id);
    CREATE INDEX IF NOT EXISTS idx_{table}_created ON {table}(created_at);
"""

SCHEMA = """
    -- Reference data
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        client_id TEXT,
        platform_id TEXT,
        parent_id TEXT,
        server_path TEXT,
        created_at REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0)
    );

    CREATE TABLE IF NOT EXISTS project_paths (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        path TEXT NOT NULL UNIQUE,
        path_type TEXT CHECK(path_type IN ('local', 'server', 'folder')) DEFAULT 'server',
        created_at REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0)
    );

    CREATE TABLE IF NOT EXISTS project_signatures (
        project_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        aliases TEXT NOT NULL DEFAULT '[]',
        keywords TEXT NOT NULL DEFAULT '[]',
        path_fragments TEXT NOT NULL DEFAULT '[]',
        weight REAL NOT NULL DEFAULT 1.0,
        server_path TEXT
    );

    -- Extraction queue fed by the capture service
    CREATE TABLE IF NOT EXISTS extractions (
        id TEXT PRIMARY KEY,
        content TEXT,
        category TEXT,
        project_path TEXT,
        session_id TEXT,
        priority TEXT,
        status TEXT CHECK(status IN ('pending', 'processed', 'skipped', 'failed')) DEFAULT 'pending',
        metadata TEXT DEFAULT '{}',
        created_at REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0),
        processed_at REAL
    );
    CREATE INDEX IF NOT EXISTS idx_extractions_status ON extractions(status, created_at);

    -- Review queue
    CREATE TABLE IF NOT EXISTS conflicts (
        id TEXT PRIMARY KEY,
        existing_table TEXT NOT NULL,
        existing_id TEXT NOT NULL,
        existing_content TEXT,
        new_content TEXT NOT NULL,
        new_source TEXT,
        conflict_type TEXT NOT NULL CHECK(conflict_type IN ('contradiction', 'outdated', 'duplicate', 'ambiguous')),
        description TEXT,
        priority TEXT NOT NULL DEFAULT 'medium',
        status TEXT NOT NULL DEFAULT 'pending',
        project_id TEXT,
        detected_by TEXT,
        resolution_notes TEXT,
        resolved_by TEXT,
        resolved_at REAL,
        created_at REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0)
    );
    CREATE INDEX IF NOT EXISTS idx_conflicts_status ON conflicts(status);

    CREATE TABLE IF NOT EXISTS purge_requests (
        id TEXT PRIMARY KEY,
        table_name TEXT NOT NULL,
        record_ids TEXT NOT NULL DEFAULT '[]',
        record_count INTEGER NOT NULL DEFAULT 0,
        cutoff_date TEXT,
        reason TEXT NOT NULL,
        project_id TEXT,
        status TEXT NOT NULL CHECK(status IN ('pending', 'approved', 'rejected')) DEFAULT 'pending',
        flagged_by TEXT NOT NULL,
        reviewed_by TEXT,
        reviewed_at REAL,
        review_notes TEXT,
        executed_at REAL,
        executed_by TEXT,
        deleted_count INTEGER,
        created_at REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0)
    );
    CREATE INDEX IF NOT EXISTS idx_purge_status ON purge_requests(status);

    CREATE TABLE IF NOT EXISTS notifications (
        id TEXT PRIMARY KEY,
        reviewer_id TEXT NOT NULL,
        notification_type TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT,
        related_table TEXT,
        related_id TEXT,
        status TEXT NOT NULL CHECK(status IN ('unread', 'read', 'dismissed')) DEFAULT 'unread',
        read_at REAL,
        created_at REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0)
    );
    CREATE INDEX IF NOT EXISTS idx_notifications_reviewer ON notifications(reviewer_id, status);

    -- Session state subject to retention
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        project_path TEXT,
        status TEXT CHECK(status IN ('active', 'completed')) DEFAULT 'active',
        started_at REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0),
        ended_at REAL
    );

    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        role TEXT,
        content TEXT,
        created_at REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0)
    );
    CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id);
    CREATE INDEX IF NOT EXISTS idx_messages_created ON messages(created_at);
""" + "".join(_TYPED_TABLE_DDL.format(table=table) for table in TYPED_TABLES)

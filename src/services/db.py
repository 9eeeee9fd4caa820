# src/services/db.py
# Responsibility: Provides centralized database connection management, transaction handling and schema setup.


import psycopg2

from src.config.settings import settings


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS crawl_items (
    id BIGSERIAL PRIMARY KEY,
    url TEXT NOT NULL,
    status VARCHAR(16) NOT NULL DEFAULT 'queued'
        CHECK (status IN ('queued', 'running', 'completed', 'failed')),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    started_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    error_message TEXT
);
CREATE INDEX IF NOT EXISTS idx_crawl_items_status_created ON crawl_items (status, created_at);

CREATE TABLE IF NOT EXISTS analysis_results (
    id BIGSERIAL PRIMARY KEY,
    url_id BIGINT NOT NULL UNIQUE REFERENCES crawl_items (id) ON DELETE CASCADE,
    html_version TEXT,
    page_title TEXT,
    h1_count INTEGER NOT NULL DEFAULT 0,
    h2_count INTEGER NOT NULL DEFAULT 0,
    h3_count INTEGER NOT NULL DEFAULT 0,
    h4_count INTEGER NOT NULL DEFAULT 0,
    h5_count INTEGER NOT NULL DEFAULT 0,
    h6_count INTEGER NOT NULL DEFAULT 0,
    internal_links_count INTEGER NOT NULL DEFAULT 0,
    external_links_count INTEGER NOT NULL DEFAULT 0,
    broken_links_count INTEGER NOT NULL DEFAULT 0,
    has_login_form BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS broken_links (
    id BIGSERIAL PRIMARY KEY,
    url_id BIGINT NOT NULL REFERENCES crawl_items (id) ON DELETE CASCADE,
    link_url TEXT NOT NULL,
    status_code INTEGER,
    error_message TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_broken_links_url_id ON broken_links (url_id);
"""


def get_raw_connection():
    """
    Creates and returns a raw psycopg2 connection.
    Used by internal services that require direct DB access.

    Returns:
        psycopg2.extensions.connection: A new database connection.
    """
    conn = psycopg2.connect(settings.DB.URL)
    conn.autocommit = False  # Explicit transaction management
    return conn

class DBTransaction:
    """
    Context manager for database transactions.
    Ensures that commits happen on success and rollbacks happen on exception.
    Also ensures connections are closed properly to prevent leaks.

    Usage:
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute(...)
    """
    def __init__(self):
        self.conn = None

    def __enter__(self):
        try:
            self.conn = get_raw_connection()
            return self.conn
        except Exception as e:
            print(f"[DB] Connection failed: {e}")
            raise

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.conn:
            try:
                if exc_type:
                    self.conn.rollback()
                    print(f"[DB] Transaction rolled back due to error: {exc_val}")
                else:
                    self.conn.commit()
            except Exception as e:
                print(f"[DB] Transaction finalization failed: {e}")
                # A failed commit must surface; an original exception is never suppressed
                if not exc_type:
                    raise
            finally:
                self.conn.close()


def init_schema():
    """Creates the crawler tables if they do not exist yet (idempotent)."""
    with DBTransaction() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
    print("[DB] Schema ready.")

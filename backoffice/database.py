#!/usr/bin/env python3
"""
Database Connection Manager for the reconciliation back office
Supports both SQLite (development) and PostgreSQL (production)
"""

import os
import sqlite3
import psycopg2
import psycopg2.extras
from contextlib import contextmanager
from typing import Generator, Optional, Any
import logging
import time

logger = logging.getLogger(__name__)

# Errors raised by either backend when a UNIQUE constraint rejects a row
INTEGRITY_ERRORS = (sqlite3.IntegrityError, psycopg2.IntegrityError)


class DatabaseManager:
    def __init__(self, db_type: Optional[str] = None, sqlite_path: Optional[str] = None):
        self.db_type = db_type or os.getenv('DB_TYPE', 'sqlite')  # 'sqlite' or 'postgresql'
        self.sqlite_path = sqlite_path
        self.connection_config = self._get_connection_config()

    def _get_connection_config(self) -> dict:
        """Get database connection configuration based on environment"""
        if self.db_type == 'postgresql':
            return {
                'host': os.getenv('DB_HOST', 'localhost'),
                'port': os.getenv('DB_PORT', '5432'),
                'database': os.getenv('DB_NAME', 'backoffice'),
                'user': os.getenv('DB_USER', 'postgres'),
                'password': os.getenv('DB_PASSWORD', ''),
                'sslmode': os.getenv('DB_SSL_MODE', 'require'),
                # Cloud SQL specific
                'unix_sock': os.getenv('DB_SOCKET_PATH'),
            }
        else:
            db_path = self.sqlite_path or os.getenv('SQLITE_DB_PATH', 'backoffice/reconciliation.db')
            return {
                'database': db_path,
                'timeout': 60.0,
                'check_same_thread': False
            }

    @contextmanager
    def get_connection(self) -> Generator[Any, None, None]:
        """Get database connection with retries on connect"""
        connection = None
        max_retries = 3

        for attempt in range(max_retries):
            try:
                if self.db_type == 'postgresql':
                    connection = self._get_postgresql_connection()
                else:
                    connection = self._get_sqlite_connection()
                break
            except (sqlite3.OperationalError, psycopg2.OperationalError) as e:
                if attempt < max_retries - 1:
                    wait_time = (attempt + 1) * 2
                    logger.warning(f"Database connection attempt {attempt + 1} failed: {e}")
                    logger.warning(f"Retrying in {wait_time} seconds...")
                    time.sleep(wait_time)
                else:
                    logger.error(f"All database connection attempts failed: {e}")
                    raise

        try:
            yield connection
        finally:
            connection.close()

    def _get_postgresql_connection(self):
        """Create PostgreSQL connection"""
        config = self.connection_config.copy()

        # Handle Cloud SQL socket connection
        if config.get('unix_sock'):
            config['host'] = config['unix_sock']
            # For Unix socket connections, SSL is not applicable
            config['sslmode'] = 'disable'
        config.pop('unix_sock', None)

        # Remove None values
        config = {k: v for k, v in config.items() if v is not None}

        conn = psycopg2.connect(**config)
        conn.autocommit = False  # Use transactions
        return conn

    def _get_sqlite_connection(self):
        """Create SQLite connection with optimizations"""
        config = self.connection_config
        conn = sqlite3.connect(**config)

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=60000")

        # Row factory for dict-like access
        conn.row_factory = sqlite3.Row

        return conn

    def adapt_query(self, query: str) -> str:
        """Queries are written with %s placeholders; SQLite wants ?"""
        if self.db_type == 'sqlite':
            return query.replace('%s', '?')
        return query

    def execute_query(self, query: str, params: tuple = None, fetch_one: bool = False, fetch_all: bool = False):
        """Execute a query and return results"""
        query = self.adapt_query(query)
        with self.get_connection() as conn:
            if self.db_type == 'postgresql':
                cursor = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            else:
                cursor = conn.cursor()

            try:
                if params:
                    cursor.execute(query, params)
                else:
                    cursor.execute(query)

                if fetch_one:
                    row = cursor.fetchone()
                    result = dict(row) if row is not None else None
                elif fetch_all:
                    result = [dict(row) for row in cursor.fetchall()]
                else:
                    result = cursor.rowcount

                conn.commit()
                return result

            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def health_check(self) -> dict:
        """Run a trivial query and report connectivity"""
        try:
            self.execute_query("SELECT 1 AS ok", fetch_one=True)
            return {'status': 'healthy', 'db_type': self.db_type}
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {'status': 'unhealthy', 'db_type': self.db_type, 'error': str(e)}

    def init_database(self):
        """Initialize database with schema"""
        id_column = 'TEXT PRIMARY KEY'
        document_type = 'JSONB' if self.db_type == 'postgresql' else 'TEXT'

        statements = [
            f"""
            CREATE TABLE IF NOT EXISTS reconciliation_ledgers (
                id {id_column},
                tenant_id TEXT NOT NULL,
                range_start TEXT NOT NULL,
                range_end TEXT NOT NULL,
                performed_at TEXT NOT NULL,
                revision INTEGER NOT NULL DEFAULT 0,
                document {document_type} NOT NULL,
                UNIQUE (tenant_id, range_start, range_end)
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS daily_sales (
                id {id_column},
                tenant_id TEXT NOT NULL,
                sale_date TEXT NOT NULL,
                document {document_type} NOT NULL,
                updated_at TEXT,
                UNIQUE (tenant_id, sale_date)
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS sap_documents (
                id {id_column},
                tenant_id TEXT NOT NULL,
                doc_date TEXT NOT NULL,
                doc_type TEXT NOT NULL DEFAULT 'invoice',
                document {document_type} NOT NULL
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS bank_statements (
                id {id_column},
                tenant_id TEXT NOT NULL,
                operation_date TEXT NOT NULL,
                document {document_type} NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_sap_documents_tenant_date ON sap_documents (tenant_id, doc_date)",
            "CREATE INDEX IF NOT EXISTS idx_bank_statements_tenant_date ON bank_statements (tenant_id, operation_date)",
        ]

        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                for statement in statements:
                    cursor.execute(statement)
                conn.commit()
                logger.info(f"{self.db_type} schema initialized successfully")
            except Exception as e:
                conn.rollback()
                logger.error(f"Error initializing {self.db_type} schema: {e}")
                raise
            finally:
                cursor.close()

# SPDX-License-Identifier: GPL-3.0-only
"""Database connection handling."""

from peewee import DatabaseError, SqliteDatabase
from playhouse.mysql_ext import MySQLConnectorDatabase

from base_logger import get_logger
from verification.utils import ensure_database_exists, get_configs

logger = get_logger(__name__)

MYSQL_HOST = get_configs("MYSQL_HOST", default_value="127.0.0.1")
MYSQL_USER = get_configs("MYSQL_USER")
MYSQL_PASSWORD = get_configs("MYSQL_PASSWORD")
MYSQL_DATABASE = get_configs("MYSQL_DATABASE", default_value="verification")


def connect():
    """Return the database handle for the configured mode.

    ``MODE=testing`` yields an in-memory SQLite database that tests rebind,
    ``SQLITE_DATABASE_PATH`` selects a SQLite file, and anything else
    connects to MySQL.
    """
    if get_configs("MODE", default_value="development") == "testing":
        logger.debug("Using in-memory SQLite database for testing.")
        return SqliteDatabase(":memory:")

    sqlite_path = get_configs("SQLITE_DATABASE_PATH")
    if sqlite_path:
        logger.debug("Using SQLite database at %s", sqlite_path)
        return SqliteDatabase(sqlite_path, pragmas={"journal_mode": "wal"})

    return connect_to_mysql()


@ensure_database_exists(MYSQL_HOST, MYSQL_USER, MYSQL_PASSWORD, MYSQL_DATABASE)
def connect_to_mysql():
    """Connect to the MySQL database, creating it if missing."""
    try:
        db = MySQLConnectorDatabase(
            MYSQL_DATABASE,
            user=MYSQL_USER,
            password=MYSQL_PASSWORD,
            host=MYSQL_HOST,
            charset="utf8mb4",
            collation="utf8mb4_unicode_ci",
        )
        logger.debug("Connected to MySQL database %s", MYSQL_DATABASE)
        return db
    except DatabaseError as error:
        logger.error("Failed to connect to MySQL database: %s", error)
        raise

"""SQLite engine helpers shared by fixtures and tests."""

from sqlalchemy import event

# Test database URL (SQLite in-memory for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def enable_sqlite_savepoints(engine) -> None:
    """
    Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on pysqlite,
    and enforce foreign keys.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

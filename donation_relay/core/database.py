from sqlalchemy import create_engine, event
from sqlalchemy.orm import registry

# one registry for the relayer tables (donations queue + counters)
mapper_registry = registry()
# the metadata object every relayer table is defined against
metadata = mapper_registry.metadata

# the wallet keeps its notes in a different database, so it gets its own registry
wallet_registry = registry()
wallet_metadata = wallet_registry.metadata


def create_db_engine(url: str):
    """Create an engine for ``url``; SQLite gets the flags FastAPI needs."""
    connect_args = {}
    if url.startswith("sqlite"):
        # required for SQLite when the engine is shared with FastAPI's threadpool
        connect_args = {"check_same_thread": False}

    engine = create_engine(url, connect_args=connect_args)

    if url.startswith("sqlite"):
        # wait for a competing writer instead of failing straight away
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA busy_timeout = 5000")
            cursor.close()

    return engine

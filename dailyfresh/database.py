"""Database configuration and initialization."""
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine_options = {
        'echo': app.config.get('SQLALCHEMY_ECHO', False),
        'pool_pre_ping': True,  # Enable connection health checks
    }
    if database_uri.startswith('sqlite'):
        # Request threads share the file; sqlite serializes writers itself
        engine_options['connect_args'] = {'check_same_thread': False, 'timeout': 30}
    else:
        engine_options['pool_size'] = 10
        engine_options['max_overflow'] = 20

    engine = create_engine(database_uri, **engine_options)
    if database_uri.startswith('sqlite'):
        _enable_sqlite_transactions(engine)

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def _enable_sqlite_transactions(sqlite_engine):
    """Let SQLAlchemy own BEGIN on pysqlite so SAVEPOINT behaves.

    BEGIN IMMEDIATE takes the write lock up front: concurrent writers queue on
    the busy timeout instead of failing with a lock upgrade deadlock.
    """
    @event.listens_for(sqlite_engine, 'connect')
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, 'begin')
    def _on_begin(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


def create_all():
    """Create every table known to the models package."""
    from dailyfresh import models  # noqa: F401  (registers mappers)
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop every table (tests and local resets only)."""
    from dailyfresh import models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


def new_session():
    """Open an independent session bound to the same engine.

    Used where two units of work must not share a transaction, e.g. when
    concurrent checkouts are simulated from worker threads.
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)()


def ping(session):
    """Return True when the database answers a trivial query."""
    row = session.execute(text("SELECT 1 as health_check")).fetchone()
    return bool(row and row[0] == 1)

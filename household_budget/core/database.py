from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from household_budget.core.config import settings

# SQLite-specific configuration
if settings.DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        settings.DATABASE_URL,
        connect_args={"check_same_thread": False}  # Allow SQLite to work with FastAPI
    )

    # Apply PRAGMAs per connection
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()
else:
    # Postgres or others
    engine = create_engine(
        settings.DATABASE_URL,
        pool_pre_ping=True,
        use_insertmanyvalues=False  # Avoid UUID sentinel mismatch with RETURNING
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

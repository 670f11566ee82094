from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from wayfarer.config import get_settings

settings = get_settings()

db_url = settings.database_url

_connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}

engine = create_engine(db_url, connect_args=_connect_args)


def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Without this, ON DELETE CASCADE doesn't work on SQLite
if db_url.startswith("sqlite"):
    event.listen(engine, "connect", set_sqlite_pragma)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

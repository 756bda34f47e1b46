from sqlalchemy import create_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.settings import settings

SQLALCHEMY_DATABASE_URL = settings.database_url


def engine_options(database_url: str) -> dict:
    """Connection options for the configured backend.

    PostgreSQL runs at READ COMMITTED with a server-side statement timeout so a
    stuck transaction is aborted and rolled back by the database itself.
    """
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}

    options: dict = {"pool_pre_ping": True}
    url = make_url(database_url)
    if (url.drivername or "").startswith("postgresql"):
        options["isolation_level"] = "READ COMMITTED"
        options["connect_args"] = {"options": f"-c statement_timeout={int(settings.db_statement_timeout_ms)}"}
    return options


engine = create_engine(SQLALCHEMY_DATABASE_URL, **engine_options(SQLALCHEMY_DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

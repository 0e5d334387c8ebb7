# pestcontrol/database.py

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from pestcontrol.core.config import settings

DATABASE_URL = settings.DATABASE_URL

engine_kwargs = {"pool_pre_ping": True}
if DATABASE_URL.startswith("sqlite"):
    # sqlite connections are shared with FastAPI's threadpool
    engine_kwargs["connect_args"] = {"check_same_thread": False}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        # one in-memory database for the whole process
        engine_kwargs["poolclass"] = StaticPool

engine = create_engine(DATABASE_URL, **engine_kwargs)

# One session per request
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for every model/table
Base = declarative_base()


def get_db():
    """Yields a database session to a FastAPI endpoint."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Creates every table that does not exist yet."""
    # Importing the models registers them on Base.metadata
    import pestcontrol.models.auth  # noqa: F401
    import pestcontrol.models.platform  # noqa: F401
    import pestcontrol.models.leads  # noqa: F401

    Base.metadata.create_all(bind=engine)

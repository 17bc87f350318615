from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from cleardrip.config import get_settings

DATABASE_URL = get_settings().DATABASE_URL

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    # Import models so every table is registered on Base.metadata
    import cleardrip.models  # noqa: F401

    Base.metadata.create_all(bind=engine)

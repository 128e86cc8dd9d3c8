from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from .core.config import settings

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL


def engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Conn operations run in a threadpool
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 10,  # Number of persistent connections
        "max_overflow": 5,  # Temporary connections beyond pool_size
        "pool_timeout": 30,  # Seconds to wait if pool is full
        "pool_recycle": 1800,  # Recycle connections every 30 mins
    }


engine = create_engine(SQLALCHEMY_DATABASE_URL, **engine_options(SQLALCHEMY_DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

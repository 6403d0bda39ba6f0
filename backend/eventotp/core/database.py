from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from eventotp.core.config import settings


def make_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # Sync routes run in the worker threadpool
        connect_args["check_same_thread"] = False
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

Base = declarative_base()

from __future__ import annotations
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./polyglot_pal.db"

Base = declarative_base()


def make_engine(url: str = DATABASE_URL) -> Engine:
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	return create_engine(url, connect_args=connect_args, future=True)


def make_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def ensure_schema(engine: Engine) -> None:
	# Import models so their tables are registered on Base.metadata
	from . import models  # noqa: F401

	Base.metadata.create_all(bind=engine)

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def build_engine(db_url: str, **kwargs) -> Engine:
    connect_args = dict(kwargs.pop("connect_args", {}) or {})
    if db_url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    return create_engine(
        db_url,
        pool_pre_ping=True,
        future=True,
        connect_args=connect_args,
        **kwargs,
    )


def build_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


RENTAL_PLATFORM_DB_URL = _require_env("RENTAL_PLATFORM_DB_URL")

engine_rental = build_engine(RENTAL_PLATFORM_DB_URL)

SessionLocalRental = build_sessionmaker(engine_rental)

# shopcart/data/database.py
from fastapi import Request
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


def create_db_engine(url: str, timeout: float = 5.0) -> Engine:
    """
    Engine tworzony jawnie przy starcie (lifespan), zamykany przy shutdown.
    timeout ogranicza czekanie na polaczenie / lock.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": timeout}}
        # in-memory musi dzielic jedno polaczenie
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["connect_timeout"] = max(int(timeout), 1)

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=timeout,
        connect_args=connect_args,
    )


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)


def init_db(engine: Engine) -> None:
    #import modeli zeby zarejestrowaly sie w Base.metadata
    from shopcart.data import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def ping(engine: Engine) -> bool:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True


def get_db(request: Request):
    #sesja per request, fabryka trzymana w app.state
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()

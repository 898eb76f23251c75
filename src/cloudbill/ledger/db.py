from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cloudbill.models.base import Base


class Database:
    """Connection pool plus session factory, constructed once per process."""

    def __init__(self, url: str, echo: bool = False, **engine_kwargs):
        self.url = url
        if url.startswith("sqlite"):
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
            if url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs.setdefault("poolclass", StaticPool)
        else:
            engine_kwargs.setdefault("pool_pre_ping", True)
        self.engine: Engine = create_engine(url, echo=echo, **engine_kwargs)
        self._sessionmaker = sessionmaker(self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        # Registers the ledger tables on Base.metadata
        from cloudbill.models import payment  # noqa: F401

        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        return self._sessionmaker()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session whose work is committed on exit and rolled back on error."""
        with self._sessionmaker.begin() as session:
            yield session

    def dispose(self) -> None:
        self.engine.dispose()

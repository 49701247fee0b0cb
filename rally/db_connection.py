# rally/db_connection.py

import os
from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from rally.entities import Base

DEFAULT_DATABASE_URL = "sqlite:///rally_queue.db"


class DbConnection:
    def __init__(self, database_url: str = None) -> None:
        self.DATABASE_URL = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
        self._sessionmaker = None

    def build_db_session_factory(self) -> Callable[[], Session]:
        if not getattr(self, "_sessionmaker", None):
            connect_args = {"check_same_thread": False} if self.DATABASE_URL.startswith("sqlite") else {}
            engine = create_engine(
                self.DATABASE_URL,
                future=True,
                pool_pre_ping=True,
                connect_args=connect_args,
            )
            Base.metadata.create_all(engine)
            self._sessionmaker = sessionmaker(
                bind=engine,
                autoflush=False,
                autocommit=False,
                future=True,
            )

        def _factory() -> Session:
            return self._sessionmaker()

        return _factory

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import Pool

from palace.ill.sqlalchemy.model import Base
from palace.ill.util.json import json_serializer
from palace.ill.util.log import LoggerMixin


class SessionManager(LoggerMixin):
    """Engines and sessions for the reference store.

    A host that already has its own tables uses its own implementations
    of the store protocols instead, and never needs this.
    """

    @classmethod
    def engine(cls, url: str, poolclass: type[Pool] | None = None) -> Engine:
        return create_engine(
            url,
            json_serializer=json_serializer,
            pool_pre_ping=True,
            poolclass=poolclass,
        )

    @classmethod
    def initialize_schema(cls, engine: Engine) -> None:
        Base.metadata.create_all(engine)

    @classmethod
    def session(cls, url: str, initialize_schema: bool = True) -> Session:
        engine = cls.engine(url)
        if initialize_schema:
            cls.initialize_schema(engine)
        cls.logger().debug(f"Opening database session on {engine.url!r}")
        return Session(engine)

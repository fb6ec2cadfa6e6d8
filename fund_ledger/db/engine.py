"""
Module: fund_ledger.db.engine
Responsibility: Engine construction, session factories and transactional
    scopes, owned by an explicit ``DatabaseRouter`` value.
Architecture position: DB layer.  May import from db/base.py.  Imports
    models lazily in create_tables() so Base.metadata is populated.

Invariants enforced:
    - One router instance owns its engines; there is no process-wide engine
      or "backup active" flag.  Callers pass the router to FundLedgerEngine,
      so two routers never share fallback state.
    - session_scope() commits on normal exit and rolls back on ANY exception,
      giving every engine operation all-or-nothing semantics.
    - PostgreSQL sessions run at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) and a per-statement timeout.

Failure modes:
    - RuntimeError from use_fallback() when no fallback URL is configured.
    - sqlalchemy.exc.TimeoutError when the pool cannot hand out a connection
      within pool_timeout; OperationalError when statement_timeout fires.
      Both abort the enclosing scope.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from fund_ledger.config import DatabaseSettings
from fund_ledger.logging_config import get_logger

logger = get_logger("db.engine")


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(
    url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_timeout: int = 30,
    statement_timeout_ms: int | None = None,
) -> Engine:
    """
    Create an engine for ``url``.

    SQLite engines (tests, local tooling) get foreign keys switched on and a
    busy timeout.  PostgreSQL engines get a bounded pool, pre-ping and an
    optional server-side statement timeout.
    """
    if _is_sqlite(url):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": pool_timeout},
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    connect_args = {}
    if statement_timeout_ms:
        connect_args["options"] = f"-c statement_timeout={int(statement_timeout_ms)}"

    return create_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_pre_ping=True,
        pool_recycle=1800,
        isolation_level="READ COMMITTED",
        connect_args=connect_args,
    )


class DatabaseRouter:
    """
    Routes sessions to the primary database or an optional fallback.

    Contract:
        Holds one engine per configured URL and a per-instance flag naming
        the active one.  Switching targets affects only sessions opened
        afterwards on this router.

    Guarantees:
        - session_scope() yields a session bound to the active engine and
          commits or rolls back as a unit.
        - Engines are created eagerly so misconfiguration fails at startup.
    """

    def __init__(
        self,
        primary_url: str,
        fallback_url: str | None = None,
        echo: bool = False,
        pool_size: int = 10,
        max_overflow: int = 5,
        pool_timeout: int = 30,
        statement_timeout_ms: int | None = None,
    ):
        engine_kwargs = dict(
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            statement_timeout_ms=statement_timeout_ms,
        )
        self._primary = build_engine(primary_url, **engine_kwargs)
        self._fallback = (
            build_engine(fallback_url, **engine_kwargs) if fallback_url else None
        )
        self._factories: dict[int, sessionmaker[Session]] = {}
        self._use_fallback = False

        logger.info(
            "router_initialized",
            extra={
                "dialect": self._primary.dialect.name,
                "has_fallback": self._fallback is not None,
                "pool_size": pool_size,
            },
        )

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> "DatabaseRouter":
        return cls(
            settings.url,
            fallback_url=settings.fallback_url,
            echo=settings.echo,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            statement_timeout_ms=settings.statement_timeout_ms,
        )

    @property
    def engine(self) -> Engine:
        """The engine sessions are currently routed to."""
        if self._use_fallback and self._fallback is not None:
            return self._fallback
        return self._primary

    @property
    def is_fallback_active(self) -> bool:
        return self._use_fallback

    @property
    def is_postgres(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    def use_fallback(self) -> None:
        """Route new sessions to the fallback database."""
        if self._fallback is None:
            raise RuntimeError("No fallback database configured")
        self._use_fallback = True
        logger.warning("router_switched_to_fallback")

    def use_primary(self) -> None:
        """Route new sessions back to the primary database."""
        if self._use_fallback:
            logger.info("router_switched_to_primary")
        self._use_fallback = False

    def session_factory(self) -> sessionmaker[Session]:
        """Session factory for the active engine (one per engine, cached)."""
        engine = self.engine
        factory = self._factories.get(id(engine))
        if factory is None:
            factory = sessionmaker(bind=engine, expire_on_commit=False)
            self._factories[id(engine)] = factory
        return factory

    def get_session(self) -> Session:
        return self.session_factory()()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Postconditions: On normal exit, the session is committed and closed.
            On exception, the session is rolled back and closed, and the
            exception is re-raised.
        """
        session = self.get_session()
        logger.debug("transaction_started")
        try:
            yield session
            session.commit()
            logger.debug("transaction_committed")
        except Exception:
            session.rollback()
            logger.debug("transaction_rolled_back", exc_info=True)
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create every ledger table on the active engine."""
        from fund_ledger.db.base import Base
        import fund_ledger.models  # noqa: F401

        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop every ledger table. Use with caution - primarily for testing."""
        from fund_ledger.db.base import Base
        import fund_ledger.models  # noqa: F401

        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        self._primary.dispose()
        if self._fallback is not None:
            self._fallback.dispose()
        self._factories.clear()

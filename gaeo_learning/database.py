"""
Database engine + session factory.

Store is constructed once at process start (defaults to SQLite for local dev,
Postgres in production), handed to every service, and closed at shutdown.
"""
import logging
from datetime import datetime, timezone
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from gaeo_learning.config import DATABASE_URL
from gaeo_learning.errors import PersistenceError

logger = logging.getLogger('gaeo_learning.database')


class Base(DeclarativeBase):
    pass


def normalize_url(url):
    # Railway/Heroku inject postgres:// but SQLAlchemy 2.x requires postgresql://
    return url.replace('postgres://', 'postgresql://', 1)


class Store:
    """
    Owns the SQLAlchemy engine and session factory.

    Usage:
        store = Store('sqlite:///local.db').open()
        with store.session() as session:
            session.add(row)
        store.close()
    """

    def __init__(self, url=None):
        self.url = normalize_url(url or DATABASE_URL)
        self.engine = None
        self._sessionmaker = None

    @property
    def is_open(self):
        return self.engine is not None

    @property
    def dialect(self):
        return self.engine.dialect.name if self.engine is not None else None

    def open(self):
        if self.engine is not None:
            return self

        # SQLite needs different engine kwargs than Postgres
        if self.url.startswith('sqlite'):
            kwargs = {'connect_args': {'check_same_thread': False}}
            if ':memory:' in self.url or self.url in ('sqlite://', 'sqlite:///'):
                kwargs['poolclass'] = StaticPool
            self.engine = create_engine(self.url, **kwargs)
        else:
            self.engine = create_engine(self.url, pool_pre_ping=True, pool_size=5, max_overflow=10)

        self._sessionmaker = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info("Store opened (%s)", self.engine.dialect.name)
        return self

    def close(self):
        if self.engine is None:
            return
        self.engine.dispose()
        self.engine = None
        self._sessionmaker = None
        logger.info("Store closed")

    def create_all(self):
        """Create all tables. Local dev and tests only — production uses Alembic."""
        import gaeo_learning.models  # noqa: F401  (registers every table on Base)
        Base.metadata.create_all(self._require_engine())

    def get_session(self):
        """Return a new DB session. Caller closes it."""
        self._require_engine()
        return self._sessionmaker()

    @contextmanager
    def session(self):
        """
        Transactional scope: commit on success, rollback on error, always close.

        SQLAlchemy errors surface as PersistenceError; engine errors raised by
        the caller inside the block propagate unchanged.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(str(e)[:200]) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _require_engine(self):
        if self.engine is None:
            raise PersistenceError("Store is not open")
        return self.engine

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()


def utcnow():
    """Timezone-aware UTC now, with microseconds (SQLite CURRENT_TIMESTAMP has none)."""
    return datetime.now(timezone.utc)

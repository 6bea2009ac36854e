"""
Database engine factory for PostgreSQL and SQLite.
Handles connection pooling and retry logic for the initial connection.
"""

import time
import logging
from sqlalchemy import create_engine, exc
from sqlalchemy.exc import OperationalError
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from .config import DatabaseConfig


logger = logging.getLogger(__name__)


def create_engine_from_config(
    db_config: DatabaseConfig,
    retries: int = 3,
    retry_delay: int = 5
) -> Engine:
    """
    Create SQLAlchemy engine from database configuration with retry logic.

    Supports:
    - PostgreSQL (postgresql+psycopg2) with connection pooling
    - SQLite (file or in-memory; in-memory shares one connection across threads)

    Args:
        db_config: Database configuration
        retries: Number of connection retry attempts (default: 3)
        retry_delay: Delay between retries in seconds (default: 5)

    Returns:
        Engine: SQLAlchemy engine

    Raises:
        OperationalError: If connection fails after retries
    """
    engine_kwargs = _engine_kwargs(db_config)

    attempt = 0
    while attempt < retries:
        try:
            engine = create_engine(db_config.url, echo=db_config.echo, **engine_kwargs)

            logger.info(f"SQLAlchemy engine created successfully: {db_config.dialect}")

            # Test connection
            with engine.connect():
                logger.debug(f"Connection test successful for {db_config.dialect}")

            return engine

        except OperationalError as oe:
            attempt += 1
            logger.error(
                f"Connection attempt {attempt}/{retries} failed for {db_config.dialect}: {oe}"
            )

            if attempt >= retries:
                logger.critical(
                    f"Max retries ({retries}) reached. Could not create SQLAlchemy engine."
                )
                raise

            logger.info(f"Retrying in {retry_delay} seconds...")
            time.sleep(retry_delay)

        except exc.SQLAlchemyError as e:
            logger.error(f"SQLAlchemy error occurred for {db_config.dialect}: {e}")
            raise

    raise OperationalError("Failed to create database engine", None, None)


def create_engine_from_url(url: str, **kwargs) -> Engine:
    """Shortcut for callers that only have a URL."""
    return create_engine_from_config(DatabaseConfig(url=url, **kwargs))


def _engine_kwargs(db_config: DatabaseConfig) -> dict:
    """Pool arguments appropriate for the configured dialect."""
    if db_config.is_sqlite:
        kwargs = {'connect_args': {'check_same_thread': False}}
        if ':memory:' in db_config.url or db_config.url in ('sqlite://', 'sqlite:///'):
            # One shared connection, otherwise every session sees an empty database
            kwargs['poolclass'] = StaticPool
        return kwargs

    return {
        'pool_size': db_config.pool_size,
        'max_overflow': db_config.max_overflow,
        'pool_timeout': db_config.pool_timeout,
        'pool_recycle': db_config.pool_recycle,
        'pool_pre_ping': db_config.pool_pre_ping,
    }


def get_pool_stats(engine: Engine) -> dict:
    """
    Get connection pool statistics for monitoring.

    Args:
        engine: SQLAlchemy engine

    Returns:
        dict: Pool statistics; empty for pools that do not track usage
    """
    pool = engine.pool
    if not hasattr(pool, 'checkedout'):
        return {}

    stats = {
        'pool_size': pool.size(),
        'checked_in': pool.checkedin(),
        'checked_out': pool.checkedout(),
        'overflow': pool.overflow(),
    }

    if pool.size() > 0:
        stats['utilization'] = f"{(pool.checkedout() / pool.size()) * 100:.1f}%"
    else:
        stats['utilization'] = "0%"

    return stats

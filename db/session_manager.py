"""
Session management utilities for database operations.

This module provides context managers and utilities for proper database
session lifecycle management, including automatic commit/rollback and cleanup.
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from db.database import db
from utils.error_handling import PersistenceError

logger = logging.getLogger(__name__)


@contextmanager
def session_scope():
    """
    Provide a transactional scope around a series of operations.

    This context manager handles:
    - Automatic commit on success
    - Automatic rollback on exceptions
    - Session cleanup

    Store failures are re-raised as PersistenceError so callers can apply
    their own retry policy; every other exception propagates unchanged.

    Usage:
        with session_scope() as session:
            session.add(proposal)
            # Session is automatically committed here
        # Session is automatically removed here
    """
    session = db.session
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Database transaction failed: %s", e)
        raise PersistenceError(f"Database operation failed: {e.__class__.__name__}") from e
    except Exception:
        session.rollback()
        raise
    finally:
        # Flask-SQLAlchemy's scoped_session remove() is safer than close()
        db.session.remove()


@contextmanager
def read_scope():
    """
    Provide the session for read-only queries.

    Nothing is committed; store failures are re-raised as PersistenceError.
    """
    session = db.session
    try:
        yield session
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Database query failed: %s", e)
        raise PersistenceError(f"Database query failed: {e.__class__.__name__}") from e


def detach(session, *instances, refresh=False):
    """
    Flush pending changes and detach instances from the session.

    Detached instances keep their loaded column values after the surrounding
    session_scope commits and removes the session, so they can be returned
    to callers outside the transaction.

    Args:
        session: SQLAlchemy session
        *instances: Model instances to detach
        refresh: Reload column values from the database first (needed after
                 SQL-side updates such as atomic increments)
    """
    session.flush()
    for instance in instances:
        if refresh:
            session.refresh(instance)
        session.expunge(instance)
    return instances[0] if len(instances) == 1 else instances


def upsert(session, model, values, **keys):
    """
    Update the row identified by ``keys`` or insert it if absent.

    The lookup and write happen inside the caller's transaction; the unique
    constraint on ``keys`` guarantees a concurrent insert fails the whole
    transaction instead of creating a duplicate row.

    Args:
        session: SQLAlchemy session
        model: The model class to upsert
        values: Column values to write
        **keys: Natural key columns identifying the row

    Returns:
        Tuple of (instance, created)
    """
    instance = session.query(model).filter_by(**keys).one_or_none()
    if instance is None:
        instance = model(**keys, **values)
        session.add(instance)
        session.flush()
        return instance, True

    for name, value in values.items():
        setattr(instance, name, value)
    session.flush()
    return instance, False

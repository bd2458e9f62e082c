# Overview: Transaction and optimistic-concurrency helpers shared by the services.

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from ..exceptions import ConflictError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def atomic(session):
    """
    Commit on success, roll back on any failure.

    StaleDataError (a version_id mismatch detected at flush) is re-raised as
    ConflictError so callers see one conflict type.
    """
    try:
        yield session
        session.commit()
    except StaleDataError as exc:
        session.rollback()
        raise ConflictError(
            "Record was modified by another request; refetch and retry",
            {"reason": str(exc)},
        ) from exc
    except Exception:
        session.rollback()
        raise


def conditional_update(session, obj, *, expected_status: str, values: dict) -> None:
    """
    UPDATE ... WHERE id = :id AND status = :expected AND version_id = :version.

    Zero affected rows means someone else moved the record first; nothing is
    written and ConflictError is raised. On success obj is expired so the
    next attribute access reloads the committed-to-be values.
    """
    session.flush()
    model = type(obj)
    stmt = (
        update(model)
        .where(
            model.id == obj.id,
            model.status == expected_status,
            model.version_id == obj.version_id,
        )
        .values(**values, version_id=model.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount != 1:
        raise ConflictError(
            f"{model.__name__} {obj.id} was changed by another request",
            {
                "id": obj.id,
                "expected_status": expected_status,
                "attempted_status": values.get("status"),
            },
        )
    session.expire(obj)

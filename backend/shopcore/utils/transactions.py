from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.orm import Session

_PENDING_KEY = "shopcore.after_commit"


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column in the schema is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@contextmanager
def smart_transaction(session: Session) -> Iterator:
    """
    Context manager that begins a unit of work on the given Session.
    If a transaction is already active, start a nested SAVEPOINT (begin_nested)
    and leave the final commit to the owner of the outer transaction.
    Otherwise start a normal transaction (begin) that commits on exit.
    Usage:
        with smart_transaction(db):
            ... DB work ...
    """
    if session.in_transaction():
        cm = session.begin_nested()
    else:
        cm = session.begin()
    with cm:
        yield


def run_after_commit(session: Session, fn, *args, **kwargs):
    """
    Call `fn` now when the session is idle, otherwise once the outermost
    transaction commits. If the transaction (or savepoint) that was current
    when it was queued rolls back, the call is dropped.
    """
    if not session.in_transaction():
        fn(*args, **kwargs)
        return
    owner = session.get_nested_transaction() or session.get_transaction()
    session.info.setdefault(_PENDING_KEY, []).append((owner, fn, args, kwargs))


def _inside(transaction, ancestor) -> bool:
    while transaction is not None:
        if transaction is ancestor:
            return True
        transaction = transaction.parent
    return False


@event.listens_for(Session, "after_soft_rollback")
def _drop_rolled_back(session, previous_transaction):
    pending = session.info.get(_PENDING_KEY)
    if pending:
        session.info[_PENDING_KEY] = [
            p for p in pending if not _inside(p[0], previous_transaction)
        ]


@event.listens_for(Session, "after_commit")
def _run_pending(session):
    # only the outermost commit fires after_commit; savepoint releases do not
    for _, fn, args, kwargs in session.info.pop(_PENDING_KEY, []):
        fn(*args, **kwargs)


@event.listens_for(Session, "after_transaction_end")
def _forget_pending(session, transaction):
    # a root transaction closed without commit (e.g. session.close())
    if transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)

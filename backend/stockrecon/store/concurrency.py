# Overview: Retry helper for record-store reads.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError

from ..extensions import db


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, session=None):
    """
    Execute a read with retry on transient OperationalError (locked database,
    dropped connection).

    Only reads go through here. A failed write is reported to the caller and
    never replayed, since replaying a restock or un-sell could apply it twice.

    The backoff is a blocking time.sleep and holds up the calling event loop.
    """
    session = session or db.session
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

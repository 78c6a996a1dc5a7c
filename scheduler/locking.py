"""Per-court serialization inside a booking transaction."""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from common.models import Court


def lock_court(session: Session, court_id: int) -> Optional[Court]:
    """Load a court and hold its row lock until the transaction ends.

    Concurrent creators on the same court queue up behind this lock, so each
    one re-reads bookings only after the previous writer has committed.
    SQLite ignores FOR UPDATE; its engine takes the database write lock at
    BEGIN instead (see ``common.database``).
    """
    stmt = select(Court).where(Court.id == court_id).with_for_update()
    return session.scalars(stmt).first()

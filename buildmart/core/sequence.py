from __future__ import annotations

from sqlalchemy import Integer, String, update
from sqlalchemy.orm import Mapped, Session, mapped_column

from buildmart.core.database import Base

QUOTATION_SEQUENCE = "QUOTATION"
CLIENT_SEQUENCE = "CLIENT"


class Sequence(Base):
    __tablename__ = "sequence"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    current: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


def next_sequence_value(session: Session, name: str) -> int:
    """Increment the named counter inside the caller's transaction and return the new value.

    The UPDATE takes a row lock, so concurrent callers serialize on the row until commit.
    A missing row is created at 1.
    """
    result = session.execute(
        update(Sequence)
        .where(Sequence.name == name)
        .values(current=Sequence.current + 1)
        .returning(Sequence.current)
        .execution_options(synchronize_session=False)
    )
    value = result.scalar_one_or_none()
    if value is not None:
        return int(value)

    session.add(Sequence(name=name, current=1))
    session.flush()
    return 1


def format_quotation_number(year: int, value: int) -> str:
    return f"QTN-{year}-{value:04d}"


def format_account_number(value: int) -> str:
    return f"CL-{value:06d}"

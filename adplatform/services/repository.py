"""Persistence seam shared by every service.

One ``Repository`` wraps one SQLAlchemy ``Session`` for the duration of a
request or a background job. Services never open their own sessions or hold
module-level clients; they receive a repository and go through it.

State changes use compare-and-set writes: the expected prior status travels
in the ``WHERE`` clause, and ``rowcount`` tells the caller whether its write
won. Reads use plain queries and never take locks.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional, Type, TypeVar

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from adplatform.database import Base
from adplatform.models.db.client_accounts import ClientAccount
from adplatform.models.db.users import User

M = TypeVar("M", bound=Base)


class Repository:
    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------ reads
    def get(self, model: Type[M], pk: int) -> Optional[M]:
        return self.session.get(model, pk, populate_existing=True)

    def query(self, model: Type[M]):
        return self.session.query(model)

    def get_user(self, user_id: int) -> Optional[User]:
        return self.get(User, user_id)

    def get_user_by_api_key(self, api_key: str) -> Optional[User]:
        return self.session.query(User).filter(User.api_key == api_key).one_or_none()

    def get_client_account_for_user(self, user_id: int) -> Optional[ClientAccount]:
        return (
            self.session.query(ClientAccount)
            .populate_existing()
            .filter(ClientAccount.user_id == user_id)
            .one_or_none()
        )

    # ----------------------------------------------------------------- writes
    def add(self, obj: Base) -> None:
        self.session.add(obj)

    def flush(self) -> None:
        self.session.flush()

    def compare_and_set(
        self,
        model: Type[M],
        pk: int,
        expected_status: Any | Iterable[Any],
        *criteria: Any,
        **values: Any,
    ) -> bool:
        """``UPDATE model SET values WHERE id = pk AND status IN expected [AND criteria]``.

        Extra ``criteria`` (e.g. an ``EXISTS`` over a related table) are checked
        by the same statement. Returns True when this call changed the row.
        """
        expected = _as_tuple(expected_status)
        stmt = (
            update(model)
            .where(model.id == pk, model.status.in_(expected), *criteria)  # type: ignore[attr-defined]
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1

    def update_where(self, model: Type[M], *criteria: Any, **values: Any) -> int:
        """Conditional bulk update; returns the number of rows changed."""
        stmt = update(model).where(*criteria).values(**values).execution_options(synchronize_session=False)
        return self.session.execute(stmt).rowcount

    def delete_where(self, model: Type[M], *criteria: Any) -> int:
        stmt = delete(model).where(*criteria).execution_options(synchronize_session=False)
        return self.session.execute(stmt).rowcount

    # ------------------------------------------------------------ transaction
    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


def _as_tuple(value: Any | Iterable[Any]) -> tuple[Any, ...]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    return (value,)


__all__ = ["Repository"]

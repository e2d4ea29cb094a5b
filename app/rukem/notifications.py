"""
In-process change notification keyed by table name.

Session hooks collect the tables written during a flush and, once the
transaction commits, call every callback subscribed to those tables.
Rolled-back transactions notify nobody. Subscribers are used to drop
cached aggregates (dashboard / public statistics); nothing in the
member/death/benefit workflow depends on them.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable

from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_subscribers: dict[str, list[Callable[[str], None]]] = defaultdict(list)
_PENDING_KEY = "rukem_changed_tables"


def subscribe(tables: str | Iterable[str], callback: Callable[[str], None]) -> None:
    """Register `callback(table_name)` for committed writes to `tables`."""
    names = [tables] if isinstance(tables, str) else list(tables)
    for name in names:
        if callback not in _subscribers[name]:
            _subscribers[name].append(callback)


def unsubscribe(tables: str | Iterable[str], callback: Callable[[str], None]) -> None:
    names = [tables] if isinstance(tables, str) else list(tables)
    for name in names:
        if callback in _subscribers.get(name, []):
            _subscribers[name].remove(callback)


def publish(table: str) -> None:
    for cb in list(_subscribers.get(table, [])):
        try:
            cb(table)
        except Exception:
            logger.exception("Change subscriber failed for table=%s", table)


def _tables_of(objs: Iterable[object]) -> set[str]:
    names = set()
    for obj in objs:
        table = getattr(obj, "__tablename__", None)
        if table:
            names.add(table)
    return names


def install_session_hooks(sm: sessionmaker) -> None:
    @event.listens_for(sm, "after_flush")
    def _collect(session: Session, flush_context) -> None:  # type: ignore[no-redef]
        changed = _tables_of(session.new) | _tables_of(session.dirty) | _tables_of(session.deleted)
        if changed:
            session.info.setdefault(_PENDING_KEY, set()).update(changed)

    @event.listens_for(sm, "do_orm_execute")
    def _collect_statement(orm_execute_state) -> None:  # type: ignore[no-redef]
        if orm_execute_state.is_update or orm_execute_state.is_delete:
            _collect_statement_table(orm_execute_state)

    @event.listens_for(sm, "after_commit")
    def _notify(session: Session) -> None:  # type: ignore[no-redef]
        changed = session.info.pop(_PENDING_KEY, set())
        for table in sorted(changed):
            publish(table)

    @event.listens_for(sm, "after_rollback")
    def _discard(session: Session) -> None:  # type: ignore[no-redef]
        session.info.pop(_PENDING_KEY, None)


def _collect_statement_table(orm_execute_state) -> None:
    mapper = orm_execute_state.bind_mapper
    table = getattr(getattr(mapper, "class_", None), "__tablename__", None)
    if table:
        orm_execute_state.session.info.setdefault(_PENDING_KEY, set()).add(table)

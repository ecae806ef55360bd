from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import event, inspect, select, text
from sqlalchemy.engine import Connection, Result
from sqlalchemy.orm import ORMExecuteState, Session, SessionTransaction, with_loader_criteria

from crm_access.core.config import get_settings
from crm_access.platform.security.context import VisibilityScope
from crm_access.platform.security.rls import OWNER_COLUMN, OwnerScopedMixin, resource_name, validate_rls_write


logger = logging.getLogger("crm_access.security.session")

SCOPE_INFO_KEY = "crm_access.visibility_scope"
# Execution option that lets trusted code paths read across owners (e.g. to tell
# "forbidden" apart from "missing" before raising NotFound).
INCLUDE_ALL_OWNERS = "include_all_owners"


def bind_visibility_scope(session: Session, scope: VisibilityScope) -> None:
    session.info[SCOPE_INFO_KEY] = scope
    if session.in_transaction():
        _set_database_viewer(session.connection(), scope)


def get_visibility_scope(session: Session) -> VisibilityScope | None:
    scope = session.info.get(SCOPE_INFO_KEY)
    return scope if isinstance(scope, VisibilityScope) else None


def clear_visibility_scope(session: Session) -> None:
    session.info.pop(SCOPE_INFO_KEY, None)


@contextmanager
def visibility_scope(session: Session, scope: VisibilityScope) -> Iterator[Session]:
    previous = get_visibility_scope(session)
    bind_visibility_scope(session, scope)
    try:
        yield session
    finally:
        if previous is None:
            clear_visibility_scope(session)
        else:
            session.info[SCOPE_INFO_KEY] = previous


@event.listens_for(Session, "do_orm_execute")
def _restrict_owner_scoped_statements(orm_execute_state: ORMExecuteState) -> Result[Any] | None:
    scope = get_visibility_scope(orm_execute_state.session)
    if scope is None:
        return None
    # Inserts are checked for admins too: new rows always belong to the viewer.
    if orm_execute_state.is_insert:
        return _check_owner_scoped_insert(orm_execute_state, scope)
    if scope.is_admin:
        return None
    if not (orm_execute_state.is_select or orm_execute_state.is_update or orm_execute_state.is_delete):
        return None
    if orm_execute_state.is_column_load or orm_execute_state.execution_options.get(INCLUDE_ALL_OWNERS, False):
        return None

    if orm_execute_state.is_update and _owner_scoped_model(orm_execute_state) is not None:
        if _is_executemany(orm_execute_state.parameters):
            _check_bulk_update_by_primary_key(orm_execute_state, scope)
            return None
        _check_inline_owner_values(orm_execute_state, scope, action="update")

    owner_ids = sorted(scope.owner_ids, key=str)
    orm_execute_state.statement = orm_execute_state.statement.options(
        with_loader_criteria(
            OwnerScopedMixin,
            lambda cls: cls.owner_user_id.in_(owner_ids),
            include_aliases=True,
        )
    )
    return None


def _owner_scoped_model(orm_execute_state: ORMExecuteState) -> type[OwnerScopedMixin] | None:
    mapper = orm_execute_state.bind_mapper
    if mapper is None or not issubclass(mapper.class_, OwnerScopedMixin):
        return None
    return mapper.class_


def _is_executemany(parameters: Any) -> bool:
    return isinstance(parameters, (list, tuple))


def _inline_owner_values(statement: Any) -> list[Any]:
    """Owner values written through ``.values()``, including multi-row VALUES."""

    params = statement.compile(column_keys=[]).params
    return [value for key, value in params.items() if key == OWNER_COLUMN or key.startswith(f"{OWNER_COLUMN}_m")]


def _check_inline_owner_values(orm_execute_state: ORMExecuteState, scope: VisibilityScope, *, action: str) -> None:
    resource = resource_name(_owner_scoped_model(orm_execute_state))
    for owner in _inline_owner_values(orm_execute_state.statement):
        validate_rls_write(resource, {OWNER_COLUMN: owner}, scope, action=action)


def _check_owner_scoped_insert(orm_execute_state: ORMExecuteState, scope: VisibilityScope) -> Result[Any] | None:
    model = _owner_scoped_model(orm_execute_state)
    if model is None:
        return None

    parameters = orm_execute_state.parameters
    if not parameters:
        _check_inline_owner_values(orm_execute_state, scope, action="create")
        return None

    rows = list(parameters) if _is_executemany(parameters) else [parameters]
    for row in rows:
        validate_rls_write(
            resource_name(model),
            {OWNER_COLUMN: row.get(OWNER_COLUMN, scope.viewer_id)},
            scope,
            action="create",
        )

    # Every parameter set is owned by the viewer now; fill in the ones that left it out.
    owner = {OWNER_COLUMN: scope.viewer_id}
    if _is_executemany(parameters):
        return orm_execute_state.invoke_statement(params=[dict(owner) for _ in rows])
    return orm_execute_state.invoke_statement(params=owner)


def _check_bulk_update_by_primary_key(orm_execute_state: ORMExecuteState, scope: VisibilityScope) -> None:
    model = _owner_scoped_model(orm_execute_state)
    resource = resource_name(model)
    primary_key = inspect(model).primary_key[0]
    rows = list(orm_execute_state.parameters)

    for row in rows:
        if OWNER_COLUMN in row:
            validate_rls_write(resource, {OWNER_COLUMN: row[OWNER_COLUMN]}, scope, action="update")

    record_ids = [row[primary_key.key] for row in rows if primary_key.key in row]
    if not record_ids:
        return
    existing = orm_execute_state.session.execute(
        select(getattr(model, OWNER_COLUMN))
        .where(primary_key.in_(record_ids))
        .execution_options(**{INCLUDE_ALL_OWNERS: True})
    ).scalars()
    for owner in existing:
        validate_rls_write(resource, {}, scope, action="update", existing_owner_id=owner)


@event.listens_for(Session, "before_flush")
def _check_owner_scoped_writes(session: Session, flush_context: Any, instances: Any) -> None:
    scope = get_visibility_scope(session)
    if scope is None:
        return

    for instance in list(session.new):
        if not isinstance(instance, OwnerScopedMixin):
            continue
        if instance.owner_user_id is None:
            instance.owner_user_id = scope.viewer_id
        validate_rls_write(
            resource_name(instance),
            {OWNER_COLUMN: instance.owner_user_id},
            scope,
            action="create",
        )

    for instance in list(session.dirty):
        if not isinstance(instance, OwnerScopedMixin) or not session.is_modified(instance):
            continue
        payload: dict[str, Any] = {}
        history = inspect(instance).attrs[OWNER_COLUMN].history
        if history.has_changes():
            payload[OWNER_COLUMN] = instance.owner_user_id
        validate_rls_write(
            resource_name(instance),
            payload,
            scope,
            action="update",
            existing_owner_id=_committed_owner(instance),
        )

    for instance in list(session.deleted):
        if not isinstance(instance, OwnerScopedMixin):
            continue
        validate_rls_write(
            resource_name(instance),
            {},
            scope,
            action="delete",
            existing_owner_id=_committed_owner(instance),
        )


@event.listens_for(Session, "after_begin")
def _publish_viewer_to_database(session: Session, transaction: SessionTransaction, connection: Connection) -> None:
    scope = get_visibility_scope(session)
    if scope is not None:
        _set_database_viewer(connection, scope)


def _committed_owner(instance: OwnerScopedMixin) -> Any:
    history = inspect(instance).attrs[OWNER_COLUMN].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return instance.owner_user_id


def _set_database_viewer(connection: Connection, scope: VisibilityScope) -> None:
    """Expose the viewer to PostgreSQL row level security policies for this transaction."""

    if connection.dialect.name != "postgresql" or not get_settings().database_rls_enabled:
        return
    connection.execute(
        text("SELECT set_config('app.current_user_id', :user_id, true)"),
        {"user_id": str(scope.viewer_id)},
    )
    logger.debug("rls.viewer_bound", extra={"user_id": str(scope.viewer_id)})

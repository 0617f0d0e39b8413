"""Service layer for business data records, user management and spreadsheets."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from prometheus_client import Counter

from .auth import AuthService
from .database import BusinessData
from .exceptions import BizDataError, NotFoundError, ValidationError
from .models.user import ROLE_USER, User
from .policy import Action, enforce, record_scope
from .spreadsheet import (
    DATA_COLUMNS,
    USER_COLUMNS,
    record_to_row,
    row_to_record_fields,
    split_tags,
    user_to_row,
    write_workbook,
)
from .store import RecordStore

logger = logging.getLogger(__name__)

RECORD_COUNTER = Counter(
    "business_records_total", "Business data record operations", ["operation"]
)
IMPORT_COUNTER = Counter("records_imported_total", "Total records created by imports")

REQUIRED_RECORD_FIELDS = ("title", "category", "description")


@dataclass
class ImportResult:
    """Outcome of a spreadsheet import: successes plus per-row errors."""

    total: int = 0
    imported: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {"imported": self.imported, "errors": self.errors, "total": self.total}


def normalize_metadata(meta: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Copy metadata, turning ``tags`` into a list of trimmed strings."""
    result = dict(meta or {})
    if "tags" in result:
        tags = split_tags(result["tags"])
        if tags:
            result["tags"] = tags
        else:
            del result["tags"]
    return result


def _require_text(values: Mapping[str, Any], names) -> None:
    for name in names:
        value = values.get(name)
        if value is not None and not str(value).strip():
            raise ValidationError("Title, category, and description cannot be empty")


# records


def list_records(store: RecordStore, identity: User) -> List[BusinessData]:
    """Return every record for admins, otherwise only the identity's own."""
    enforce(identity, Action.LIST_RECORDS)
    return store.list_records(owner_id=record_scope(identity))


def get_record(store: RecordStore, identity: User, record_id: str) -> BusinessData:
    record = store.get_record(record_id)
    if record is None:
        raise NotFoundError("Data entry not found")
    enforce(identity, Action.READ_RECORD, record)
    return record


def create_record(
    store: RecordStore,
    identity: User,
    title: Optional[str],
    category: Optional[str],
    description: Optional[str],
    value: Optional[float] = None,
    status: Optional[str] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> BusinessData:
    """Create a record owned by ``identity``."""
    enforce(identity, Action.CREATE_RECORD)
    if not all((text or "").strip() for text in (title, category, description)):
        raise ValidationError("Title, category, and description are required")

    record = store.create_record(
        owner_id=identity.id,
        title=title.strip(),
        category=category.strip(),
        description=description.strip(),
        value=float(value or 0),
        status=(status or "").strip() or "active",
        meta=normalize_metadata(meta),
    )
    RECORD_COUNTER.labels(operation="create").inc()
    return record


def update_record(
    store: RecordStore, identity: User, record_id: str, **changes: Any
) -> BusinessData:
    """Update a record the identity owns, or any record for admins.

    Fields passed as ``None`` are left unchanged; the owner never changes.
    """
    existing = store.get_record(record_id)
    if existing is None:
        raise NotFoundError("Data entry not found")
    enforce(identity, Action.UPDATE_RECORD, existing)

    _require_text(changes, REQUIRED_RECORD_FIELDS)
    for name in REQUIRED_RECORD_FIELDS + ("status",):
        if changes.get(name) is not None:
            changes[name] = str(changes[name]).strip()
    if changes.get("value") is not None:
        changes["value"] = float(changes["value"])
    if changes.get("meta") is not None:
        changes["meta"] = normalize_metadata(changes["meta"])

    try:
        record = store.update_record(record_id, **changes)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if record is None:
        raise NotFoundError("Data entry not found")
    RECORD_COUNTER.labels(operation="update").inc()
    logger.info("updated record id=%s by user=%s", record_id, identity.id)
    return record


def delete_record(store: RecordStore, identity: User, record_id: str) -> None:
    existing = store.get_record(record_id)
    if existing is None:
        raise NotFoundError("Data entry not found")
    enforce(identity, Action.DELETE_RECORD, existing)
    if not store.delete_record(record_id):
        raise NotFoundError("Data entry not found")
    RECORD_COUNTER.labels(operation="delete").inc()
    logger.info("deleted record id=%s by user=%s", record_id, identity.id)


# users


def list_users(auth: AuthService, identity: User) -> List[User]:
    enforce(identity, Action.LIST_USERS)
    return auth.store.list_users()


def create_user(
    auth: AuthService,
    identity: User,
    email: str,
    password: str,
    name: str,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> User:
    """Create an account on behalf of an admin."""
    enforce(identity, Action.CREATE_USER)
    return auth.create_user(
        email,
        password,
        name,
        role=role or ROLE_USER,
        is_active=True if is_active is None else is_active,
    )


def update_user(
    auth: AuthService,
    identity: User,
    user_id: str,
    email: Optional[str] = None,
    password: Optional[str] = None,
    name: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> User:
    """Update an account; only admins may change role or active flag."""
    target = auth.store.get_user(user_id)
    enforce(identity, Action.UPDATE_USER, target)
    if target is None:
        raise NotFoundError("User not found")
    if (role is not None and role != target.role) or (
        is_active is not None and is_active != target.is_active
    ):
        enforce(identity, Action.MANAGE_ROLES, target)

    user = auth.update_user(
        user_id,
        email=email,
        password=password,
        name=name,
        role=role,
        is_active=is_active,
    )
    if user is None:
        raise NotFoundError("User not found")
    logger.info("updated user id=%s by user=%s", user_id, identity.id)
    return user


def delete_user(auth: AuthService, identity: User, user_id: str) -> None:
    target = auth.store.get_user(user_id)
    enforce(identity, Action.DELETE_USER, target)
    if target is None or not auth.delete_user(user_id):
        raise NotFoundError("User not found or failed to delete")


# spreadsheets


def export_records(store: RecordStore, identity: User) -> bytes:
    """Render the records visible to ``identity`` as an ``.xlsx`` workbook."""
    enforce(identity, Action.EXPORT_RECORDS)
    records = store.list_records(owner_id=record_scope(identity))
    if not records:
        raise NotFoundError("No data available for export")
    names = {user.id: user.name for user in store.list_users()}
    rows = [record_to_row(record, names.get(record.owner_id)) for record in records]
    logger.info("exporting %d records for user=%s", len(rows), identity.id)
    return write_workbook(rows, DATA_COLUMNS, "Business Data")


def export_users(store: RecordStore, identity: User) -> bytes:
    enforce(identity, Action.EXPORT_USERS)
    users = store.list_users()
    if not users:
        raise NotFoundError("No data available for export")
    return write_workbook([user_to_row(u) for u in users], USER_COLUMNS, "Users")


def import_records(
    store: RecordStore, identity: User, rows: List[Mapping[str, Any]]
) -> ImportResult:
    """Create one record per row, owned by ``identity``.

    A bad row is reported in ``errors`` and skipped; it never aborts the
    rest of the batch.
    """
    enforce(identity, Action.IMPORT_RECORDS)
    if not rows:
        raise ValidationError("No data found in the uploaded file")

    result = ImportResult(total=len(rows))
    for number, row in enumerate(rows, start=1):
        try:
            fields = row_to_record_fields(row)
            store.create_record(owner_id=identity.id, **fields)
        except BizDataError as exc:
            result.errors.append(f"Row {number}: {exc.message}")
            continue
        result.imported += 1

    IMPORT_COUNTER.inc(result.imported)
    logger.info(
        "imported %d of %d rows for user=%s", result.imported, result.total, identity.id
    )
    return result

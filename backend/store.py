# Document persistence: SQL primary, local JSON fallback, and the typed repository on top
from __future__ import annotations
from typing import Callable, Optional
import json
import logging
import os
import secrets
import tempfile
import threading
import time

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from fastapi import Depends

import config
from db import get_db

from errors import DuplicateEmailError, NotFoundError, StoreUnavailableError, SurveyServiceError
from models import COLLECTIONS
from schemas import SurveyResponse

logger = logging.getLogger(__name__)

RESPONSES = "survey_responses"
USERS = "admin_users"
CUSTOM_SURVEYS = "custom_surveys"

# local store namespace for each collection
LOCAL_KEYS = {
    RESPONSES: "schooly_survey_responses",
    USERS: "schooly_users",
    CUSTOM_SURVEYS: "schooly_custom_surveys",
}
_ID_PREFIX = {RESPONSES: "response", USERS: "user", CUSTOM_SURVEYS: "custom-survey"}


def _matches(doc: dict, filters: dict) -> bool:
    return all(doc.get(k) == v for k, v in filters.items())


class DocumentStore:
    """Minimal document API shared by every backend.

    ``find`` supports equality filters on one or more keys; ordering is left to
    the caller so no backend needs composite indexes.
    """

    def insert(self, collection: str, doc: dict) -> str:
        raise NotImplementedError

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        raise NotImplementedError

    def find(self, collection: str, **filters) -> list[dict]:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, changes: dict) -> dict:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError


# ------------------------
# SQL (primary)
# ------------------------
class SqlDocumentStore(DocumentStore):
    def __init__(self, db: Session):
        self.db = db

    def _model(self, collection: str):
        return COLLECTIONS[collection]

    def _to_doc(self, row, columns: dict) -> dict:
        doc = dict(row.data or {})
        for key, col in columns.items():
            doc[key] = getattr(row, col)
        doc["id"] = row.id
        return doc

    def _apply(self, row, doc: dict, columns: dict) -> None:
        for key, col in columns.items():
            if key in doc:
                setattr(row, col, doc[key])
        row.data = {k: v for k, v in doc.items() if k not in columns and k != "id"}

    def insert(self, collection, doc):
        model, columns = self._model(collection)
        doc_id = doc.get("id") or secrets.token_hex(10)
        row = model(id=doc_id)
        self._apply(row, doc, columns)
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if collection == USERS:
                raise DuplicateEmailError()
            raise
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return doc_id

    def get(self, collection, doc_id):
        model, columns = self._model(collection)
        try:
            row = self.db.get(model, doc_id)
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return self._to_doc(row, columns) if row else None

    def find(self, collection, **filters):
        model, columns = self._model(collection)
        q = select(model)
        data_filters = {}
        for key, value in filters.items():
            if key == "id":
                q = q.where(model.id == value)
            elif key in columns:
                q = q.where(getattr(model, columns[key]) == value)
            else:
                data_filters[key] = value
        try:
            rows = self.db.execute(q).scalars().all()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        docs = [self._to_doc(r, columns) for r in rows]
        return [d for d in docs if _matches(d, data_filters)]

    def update(self, collection, doc_id, changes):
        model, columns = self._model(collection)
        row = self.db.get(model, doc_id)
        if not row:
            raise NotFoundError()
        doc = self._to_doc(row, columns)
        doc.update(changes)
        self._apply(row, doc, columns)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if collection == USERS:
                raise DuplicateEmailError()
            raise
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return self._to_doc(row, columns)

    def delete(self, collection, doc_id):
        model, _ = self._model(collection)
        row = self.db.get(model, doc_id)
        if not row:
            return False
        self.db.delete(row)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return True


# ------------------------
# Local JSON file (fallback)
# ------------------------
class LocalJsonStore(DocumentStore):
    """Durable key-value fallback: one JSON file, one namespaced list per collection."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                return json.load(fh) or {}
        except (OSError, ValueError) as exc:
            raise StoreUnavailableError() from exc

    def _save(self, data: dict) -> None:
        folder = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp = tempfile.mkstemp(dir=folder, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StoreUnavailableError() from exc

    def _items(self, data: dict, collection: str) -> list:
        return data.setdefault(LOCAL_KEYS[collection], [])

    def insert(self, collection, doc):
        with self._lock:
            data = self._load()
            items = self._items(data, collection)
            doc = dict(doc)
            doc["id"] = doc.get("id") or f"{_ID_PREFIX[collection]}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"
            if collection == USERS and any(
                (u.get("email") or "").lower() == (doc.get("email") or "").lower() for u in items
            ):
                raise DuplicateEmailError()
            items.append(doc)
            self._save(data)
            return doc["id"]

    def get(self, collection, doc_id):
        with self._lock:
            for doc in self._items(self._load(), collection):
                if doc.get("id") == doc_id:
                    return dict(doc)
        return None

    def find(self, collection, **filters):
        with self._lock:
            return [dict(d) for d in self._items(self._load(), collection) if _matches(d, filters)]

    def update(self, collection, doc_id, changes):
        with self._lock:
            data = self._load()
            for doc in self._items(data, collection):
                if doc.get("id") == doc_id:
                    doc.update(changes)
                    doc["id"] = doc_id
                    self._save(data)
                    return dict(doc)
        raise NotFoundError()

    def delete(self, collection, doc_id):
        with self._lock:
            data = self._load()
            items = self._items(data, collection)
            kept = [d for d in items if d.get("id") != doc_id]
            if len(kept) == len(items):
                return False
            data[LOCAL_KEYS[collection]] = kept
            self._save(data)
            return True


# ------------------------
# Primary-then-secondary composition
# ------------------------
class FallbackStore(DocumentStore):
    """Try the primary store; on connectivity/query failure use the secondary.

    Business errors (duplicate email, not found) propagate unchanged. If the
    secondary fails too, a StoreUnavailableError reaches the caller.
    """

    _FAILOVER = (SQLAlchemyError, StoreUnavailableError, OSError)

    def __init__(self, primary: DocumentStore, secondary: DocumentStore):
        self.primary = primary
        self.secondary = secondary
        self.degraded = False

    def _call(self, op: str, *args, **kwargs):
        try:
            return getattr(self.primary, op)(*args, **kwargs)
        except SurveyServiceError as exc:
            if not isinstance(exc, StoreUnavailableError):
                raise
            primary_error = exc
        except self._FAILOVER as exc:
            primary_error = exc
        logger.warning("Primary store failed on %s (%s); using local store", op, primary_error)
        self.degraded = True
        try:
            return getattr(self.secondary, op)(*args, **kwargs)
        except SurveyServiceError as exc:
            if isinstance(exc, StoreUnavailableError):
                logger.error("Local store failed on %s as well", op)
            raise
        except self._FAILOVER as exc:
            logger.error("Local store failed on %s as well: %s", op, exc)
            raise StoreUnavailableError() from exc

    def insert(self, collection, doc):
        return self._call("insert", collection, doc)

    def get(self, collection, doc_id):
        return self._call("get", collection, doc_id)

    def find(self, collection, **filters):
        return self._call("find", collection, **filters)

    def update(self, collection, doc_id, changes):
        return self._call("update", collection, doc_id, changes)

    def delete(self, collection, doc_id):
        return self._call("delete", collection, doc_id)


# ------------------------
# Typed repository
# ------------------------
class Repository:
    """Typed operations over a DocumentStore.

    Args:
        store: Main store (normally a FallbackStore).
        local: Local store, consulted first when resolving custom surveys.
    """

    def __init__(self, store: DocumentStore, local: Optional[DocumentStore] = None):
        self.store = store
        self.local = local

    # --- responses ---
    def save_response(self, response: SurveyResponse) -> str:
        record = response.to_record()
        record.pop("id", None)
        response_id = self.store.insert(RESPONSES, record)
        logger.info("Stored response %s for school %s survey %s", response_id, response.school_code, response.survey_code)
        return response_id

    def get_response(self, response_id: str) -> Optional[SurveyResponse]:
        doc = self.store.get(RESPONSES, response_id)
        return SurveyResponse.from_record(doc) if doc else None

    def list_by_school(self, school_code: str) -> list[SurveyResponse]:
        docs = self.store.find(RESPONSES, schoolCode=school_code)
        return sorted((SurveyResponse.from_record(d) for d in docs), key=lambda r: r.timestamp)

    def list_all(self) -> list[SurveyResponse]:
        docs = self.store.find(RESPONSES)
        return sorted((SurveyResponse.from_record(d) for d in docs), key=lambda r: r.timestamp)

    # --- admin users ---
    def create_user(self, doc: dict) -> dict:
        doc = dict(doc)
        doc["email"] = doc["email"].strip().lower()
        if self.find_user_by_email(doc["email"]):
            raise DuplicateEmailError()
        doc["id"] = self.store.insert(USERS, doc)
        return doc

    def get_user(self, user_id: str) -> Optional[dict]:
        return self.store.get(USERS, user_id)

    def find_user_by_email(self, email: str) -> Optional[dict]:
        hits = self.store.find(USERS, email=(email or "").strip().lower())
        return hits[0] if hits else None

    def list_secondary_users(self, admin_id: str) -> list[dict]:
        return self.store.find(USERS, createdBy=admin_id, userType="secondary")

    def count_secondary_users(self, school_code: str) -> int:
        return len(self.store.find(USERS, schoolCode=school_code, userType="secondary"))

    def update_user(self, user_id: str, changes: dict) -> dict:
        if "email" in changes and changes["email"]:
            changes = dict(changes, email=changes["email"].strip().lower())
            other = self.find_user_by_email(changes["email"])
            if other and other["id"] != user_id:
                raise DuplicateEmailError()
        return self.store.update(USERS, user_id, changes)

    def delete_user(self, user_id: str) -> bool:
        return self.store.delete(USERS, user_id)

    # --- custom surveys ---
    def save_custom_survey(self, doc: dict) -> str:
        return self.store.insert(CUSTOM_SURVEYS, doc)

    def get_custom_survey(self, survey_id: str) -> Optional[dict]:
        return self.store.get(CUSTOM_SURVEYS, survey_id)

    def list_custom_surveys(self, school_code: str) -> list[dict]:
        docs = self.store.find(CUSTOM_SURVEYS, schoolCode=school_code)
        return sorted(docs, key=lambda d: d.get("lastModified") or 0, reverse=True)

    def list_all_custom_surveys(self) -> list[dict]:
        return self.store.find(CUSTOM_SURVEYS)

    def update_custom_survey(self, survey_id: str, changes: dict) -> dict:
        try:
            return self.store.update(CUSTOM_SURVEYS, survey_id, changes)
        except NotFoundError:
            raise NotFoundError("Encuesta no encontrada")

    def delete_custom_survey(self, survey_id: str) -> bool:
        return self.store.delete(CUSTOM_SURVEYS, survey_id)

    def find_active_custom_survey(self, survey_code: str, school_code: str) -> Optional[dict]:
        """Local store first, then the main store."""
        filters = {"surveyCode": survey_code, "schoolCode": school_code, "isActive": True}
        sources: list[Callable[..., list]] = []
        if self.local is not None:
            sources.append(self.local.find)
        sources.append(self.store.find)
        for find in sources:
            try:
                hits = find(CUSTOM_SURVEYS, **filters)
            except StoreUnavailableError:
                logger.warning("Custom survey lookup skipped an unavailable store")
                continue
            if hits:
                return hits[0]
        return None


# ------------------------
# Dependencies
# ------------------------
_local_store = LocalJsonStore(config.LOCAL_STORE_PATH)


def get_local_store() -> LocalJsonStore:
    return _local_store


def get_repository(db: Session = Depends(get_db), local: LocalJsonStore = Depends(get_local_store)) -> Repository:
    return Repository(FallbackStore(SqlDocumentStore(db), local), local=local)

"""
Document layer

Binds the schemas in schemas.py to MongoDB collections and runs their
lifecycle hooks:

- save() validates the whole document, then calls before_save(), then
  stamps created_at / updated_at and writes. Updates only $set the fields
  that changed since the document was loaded.
- reads leave out hidden fields unless the caller names them in
  include_hidden.
- ContactDocument reads expand user_id into the referenced user.
"""

import functools
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING

import database
from schemas import Contact, User, validate_document
from security import hash_password, verify_password

logger = logging.getLogger(__name__)

TIMESTAMP_FIELDS = ("created_at", "updated_at")
_MISSING = object()


def to_object_id(value) -> Optional[ObjectId]:
    """Coerce an id to ObjectId. Returns None for anything malformed."""
    if value is None or isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


class Document:
    schema: Type[BaseModel]
    collection_name: str
    # (keys, create_index options)
    indexes: Sequence[Tuple[List[Tuple[str, int]], Dict[str, Any]]] = ()
    hidden_fields: Tuple[str, ...] = ()
    reference_fields: Tuple[str, ...] = ()
    # left out of storage when empty, so sparse indexes skip the document
    omit_when_empty: Tuple[str, ...] = ()

    def __init__(self, **fields):
        self.id: Optional[ObjectId] = None
        self._data: Dict[str, Any] = {}
        self._snapshot: Dict[str, Any] = {}
        self._populated: Dict[str, Optional[dict]] = {}
        self._is_new = True
        for name, value in fields.items():
            if name not in self.schema.model_fields:
                raise TypeError(f"{type(self).__name__} has no field {name!r}")
            setattr(self, name, value)

    def __getattr__(self, name):
        if not name.startswith("_") and (name in self.schema.model_fields or name in TIMESTAMP_FIELDS):
            return self._data.get(name)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __setattr__(self, name, value):
        if name in self.schema.model_fields:
            self._data[name] = value
        else:
            super().__setattr__(name, value)

    def __repr__(self):
        return f"<{type(self).__name__} {self.id}>"

    @classmethod
    def from_mongo(cls, raw: dict) -> "Document":
        doc = cls()
        doc.id = raw.get("_id")
        doc._data = {k: v for k, v in raw.items() if k != "_id"}
        doc._snapshot = dict(doc._data)
        doc._is_new = False
        return doc

    @property
    def is_new(self) -> bool:
        return self._is_new

    def is_modified(self, name: str) -> bool:
        return self._data.get(name, _MISSING) != self._snapshot.get(name, _MISSING)

    def modified_fields(self) -> List[str]:
        names = set(self._data) | set(self._snapshot)
        return sorted(n for n in names if n not in TIMESTAMP_FIELDS and self.is_modified(n))

    def _omitted(self, name: str, value) -> bool:
        return name in self.omit_when_empty and value in (None, "")

    def validate(self) -> None:
        payload = {k: v for k, v in self._data.items() if k in self.schema.model_fields}
        model = validate_document(self.schema, payload)
        # new documents pick up schema defaults, loaded ones only re-clean what they hold
        cleaned = model.model_dump() if self._is_new else model.model_dump(include=set(payload))
        for name in self.reference_fields:
            if name in cleaned:
                cleaned[name] = to_object_id(cleaned[name])
        self._data.update(cleaned)

    def before_save(self) -> None:
        pass

    def save(self) -> "Document":
        # validate and before_save rewrite _data in place; roll back if the write fails
        previous = dict(self._data)
        try:
            self._write()
        except Exception:
            self._data = previous
            raise
        self._snapshot = dict(self._data)
        return self

    def _write(self) -> None:
        self.validate()
        self.before_save()
        now = datetime.now(timezone.utc)

        if self._is_new:
            record = {k: v for k, v in self._data.items() if not self._omitted(k, v)}
            record["created_at"] = now
            record["updated_at"] = now
            self.id = ObjectId(database.create_document(self.collection_name, record))
            self._data["created_at"] = now
            self._data["updated_at"] = now
            self._is_new = False
            logger.debug("Inserted %s %s", self.collection_name, self.id)
        else:
            changed = self.modified_fields()
            if changed:
                to_set = {"updated_at": now}
                to_unset = {}
                for name in changed:
                    value = self._data.get(name)
                    if self._omitted(name, value):
                        to_unset[name] = ""
                    else:
                        to_set[name] = value
                update = {"$set": to_set}
                if to_unset:
                    update["$unset"] = to_unset
                self.get_collection().update_one({"_id": self.id}, update)
                self._data["updated_at"] = now
                logger.debug("Updated %s %s fields=%s", self.collection_name, self.id, changed)

    def delete(self) -> None:
        self.get_collection().delete_one({"_id": self.id})
        logger.debug("Deleted %s %s", self.collection_name, self.id)

    def to_dict(self) -> dict:
        """Stored representation, including any hidden field that was loaded."""
        out = {"_id": self.id}
        out.update(self._data)
        return out

    def to_json(self) -> dict:
        """Output representation. Hidden fields are always stripped."""
        out = {"_id": str(self.id) if self.id else None}
        for name, value in self._data.items():
            if name in self.hidden_fields:
                continue
            out[name] = str(value) if isinstance(value, ObjectId) else value
        for name, ref in self._populated.items():
            out[name] = _ref_to_json(ref)
        return out

    # Queries

    @classmethod
    def get_collection(cls):
        return database.get_collection(cls.collection_name)

    @classmethod
    def _projection(cls, include_hidden: Iterable[str]) -> Optional[dict]:
        excluded = {name: 0 for name in cls.hidden_fields if name not in include_hidden}
        return excluded or None

    @classmethod
    def _fetch_one(cls, filter_dict: dict, include_hidden: Iterable[str]):
        raw = cls.get_collection().find_one(filter_dict, cls._projection(include_hidden))
        return cls.from_mongo(raw) if raw else None

    @classmethod
    def find(cls, filter_dict: Optional[dict] = None, sort=None, skip: int = 0, limit: int = 0,
             include_hidden: Iterable[str] = ()) -> list:
        cursor = cls.get_collection().find(filter_dict or {}, cls._projection(include_hidden))
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [cls.from_mongo(raw) for raw in cursor]

    @classmethod
    def find_one(cls, filter_dict: dict, include_hidden: Iterable[str] = ()):
        return cls._fetch_one(filter_dict, include_hidden)

    @classmethod
    def find_by_id(cls, doc_id, include_hidden: Iterable[str] = ()):
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        return cls._fetch_one({"_id": oid}, include_hidden)

    @classmethod
    def count(cls, filter_dict: Optional[dict] = None) -> int:
        return cls.get_collection().count_documents(filter_dict or {})

    @classmethod
    def ensure_indexes(cls) -> None:
        collection = cls.get_collection()
        for keys, options in cls.indexes:
            collection.create_index(keys, **options)


def _ref_to_json(ref: Optional[dict]) -> Optional[dict]:
    if ref is None:
        return None
    return {k: str(v) if isinstance(v, ObjectId) else v for k, v in ref.items()}


def expand_references(docs: Iterable[Document], path: str, target: Type[Document], fields: Sequence[str]) -> None:
    """Attach the referenced `target` records to each doc under `path`, one query for the batch."""
    docs = [d for d in docs if d is not None]
    ids = {d._data.get(path) for d in docs} - {None}
    found = {}
    if ids:
        projection = {name: 1 for name in fields}
        for raw in target.get_collection().find({"_id": {"$in": list(ids)}}, projection):
            found[raw["_id"]] = raw
    for doc in docs:
        ref = doc._data.get(path)
        # a dangling reference expands to None, like an anonymous one
        doc._populated[path] = found.get(ref) if ref is not None else None


def populate(path: str, target: Type[Document], fields: Sequence[str]):
    """
    Wrap a read classmethod so its results come back with `path` expanded.

    Callers pass recursed=True for internal lookups that must see the raw
    reference only.
    """
    def decorator(read):
        @functools.wraps(read)
        def wrapper(cls, *args, recursed: bool = False, **kwargs):
            result = read(cls, *args, **kwargs)
            if recursed or result is None:
                return result
            expand_references(result if isinstance(result, list) else [result], path, target, fields)
            return result
        return wrapper
    return decorator


class UserDocument(Document):
    schema = User
    collection_name = "user"
    hidden_fields = ("password",)
    omit_when_empty = ("password", "google_id")
    indexes = (
        ([("email", ASCENDING)], {"unique": True}),
        ([("google_id", ASCENDING)], {"unique": True, "sparse": True}),
    )

    def before_save(self) -> None:
        if not self.is_modified("password") or not self.password:
            return
        self.password = hash_password(self.password)
        logger.debug("Hashed new password for user %s", self.id or self.email)

    def match_password(self, candidate: str) -> bool:
        # Google-only accounts and reads without include_hidden have no hash
        if not self.password:
            return False
        return verify_password(candidate, self.password)


POPULATED_USER_FIELDS = ("name", "email", "profile_image")


class ContactDocument(Document):
    schema = Contact
    collection_name = "contact"
    reference_fields = ("user_id",)
    indexes = (
        ([("user_id", ASCENDING), ("created_at", DESCENDING)], {}),
        ([("is_read", ASCENDING)], {}),
        ([("email", ASCENDING)], {}),
    )

    @classmethod
    @populate("user_id", UserDocument, POPULATED_USER_FIELDS)
    def find(cls, *args, **kwargs):
        return super().find(*args, **kwargs)

    @classmethod
    @populate("user_id", UserDocument, POPULATED_USER_FIELDS)
    def find_one(cls, *args, **kwargs):
        return super().find_one(*args, **kwargs)

    @classmethod
    @populate("user_id", UserDocument, POPULATED_USER_FIELDS)
    def find_by_id(cls, *args, **kwargs):
        return super().find_by_id(*args, **kwargs)

    @property
    def user(self) -> Optional[dict]:
        return self._populated.get("user_id")

    def populate_user(self) -> "ContactDocument":
        expand_references([self], "user_id", UserDocument, POPULATED_USER_FIELDS)
        return self


def ensure_indexes() -> None:
    for document_cls in (UserDocument, ContactDocument):
        document_cls.ensure_indexes()
    logger.info("Indexes ensured")

"""Repository for identities, refresh tokens and the account activity log."""

from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any

import pymongo
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.auth.models import (
    ActivityAction,
    Identity,
    IdentityStatus,
    RefreshTokenRecord,
    identity_to_document,
    normalize_email,
)

LOGGER = logging.getLogger(__name__)


class DuplicateIdentityError(Exception):
    """Raised when a live identity already owns the email or phone."""

    def __init__(self, field: str) -> None:
        super().__init__(f"Identity with this {field} already exists")
        self.field = field


def _is_live(row: dict[str, Any]) -> bool:
    return str(row.get("status", "")) != IdentityStatus.DELETED.value


def _duplicate_key_field(exc: DuplicateKeyError) -> str:
    """Name the identity field whose unique index rejected the insert."""
    key_pattern = (exc.details or {}).get("keyPattern") or {}
    return "phone" if "phone" in key_pattern else "email"


class IdentityRepository:
    """Identity repository with MongoDB primary and file-store fallback."""

    def __init__(self, app_root: Path) -> None:
        """Initialize repository storage backends."""
        self._fallback_dir = app_root / "runtime" / "auth_store"
        self._fallback_dir.mkdir(parents=True, exist_ok=True)
        self._identities_file = self._fallback_dir / "identities.json"
        self._refresh_file = self._fallback_dir / "refresh_tokens.json"
        self._activity_file = self._fallback_dir / "activity_log.json"
        self._file_lock = RLock()

        self._mongo_identities = None
        self._mongo_refresh = None
        self._mongo_activity = None

        mongo_uri = os.getenv("MONGODB_URI", "").strip()
        mongo_db = os.getenv("MONGODB_DB", "petites_annonces").strip() or "petites_annonces"

        if mongo_uri:
            try:
                client: Any = pymongo.MongoClient(mongo_uri, serverSelectionTimeoutMS=3000)
                client.admin.command("ping")
                db = client[mongo_db]
                self._mongo_identities = db["identities"]
                self._mongo_refresh = db["refresh_tokens"]
                self._mongo_activity = db["activity_log"]
            except PyMongoError:
                LOGGER.warning("mongo_unavailable_using_file_store", exc_info=True)
                self._mongo_identities = None
                self._mongo_refresh = None
                self._mongo_activity = None

    @property
    def uses_mongo(self) -> bool:
        return self._mongo_identities is not None

    def _read_json_file(self, path: Path) -> list[dict[str, Any]]:
        """Read list payload from JSON file with empty fallback."""
        if not path.exists():
            return []
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            LOGGER.warning("auth_store_file_unreadable", extra={"path": str(path)})
            return []
        return payload if isinstance(payload, list) else []

    def _write_json_file(self, path: Path, items: list[dict[str, Any]]) -> None:
        """Persist list payload to JSON file atomically."""
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(items, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(path)

    # Identities

    def get_identity(self, identity_id: str) -> Identity | None:
        """Get identity by id."""
        if self._mongo_identities is not None:
            doc = self._mongo_identities.find_one({"identity_id": identity_id}, {"_id": 0})
            return Identity.model_validate(doc) if doc else None

        with self._file_lock:
            for row in self._read_json_file(self._identities_file):
                if str(row.get("identity_id", "")) == identity_id:
                    return Identity.model_validate(row)
        return None

    def find_by_email_or_phone(
        self, email: str, phone: str, *, include_deleted: bool = False
    ) -> Identity | None:
        """Find an identity owning the email or the phone, live records first."""
        key_email = normalize_email(email)
        key_phone = phone.strip()
        if self._mongo_identities is not None:
            query: dict[str, Any] = {"$or": [{"email": key_email}, {"phone": key_phone}]}
            rows = list(self._mongo_identities.find(query, {"_id": 0}))
        else:
            with self._file_lock:
                rows = [
                    row
                    for row in self._read_json_file(self._identities_file)
                    if str(row.get("email", "")).lower() == key_email
                    or str(row.get("phone", "")) == key_phone
                ]

        live = [row for row in rows if _is_live(row)]
        if live:
            # An exact email match wins over a phone match.
            live.sort(key=lambda row: str(row.get("email", "")).lower() != key_email)
            return Identity.model_validate(live[0])
        if include_deleted and rows:
            return Identity.model_validate(rows[0])
        return None

    def create_identity(self, identity: Identity) -> Identity:
        """Insert a new identity, enforcing live email/phone uniqueness."""
        doc = identity_to_document(identity)
        if self._mongo_identities is not None:
            self._raise_if_taken(self.find_by_email_or_phone(identity.email, identity.phone), identity)
            try:
                self._mongo_identities.insert_one(dict(doc))
            except DuplicateKeyError as exc:
                raise DuplicateIdentityError(_duplicate_key_field(exc)) from exc
            return identity

        with self._file_lock:
            items = self._read_json_file(self._identities_file)
            for row in items:
                if not _is_live(row):
                    continue
                if str(row.get("email", "")).lower() == identity.email:
                    raise DuplicateIdentityError("email")
                if str(row.get("phone", "")) == identity.phone:
                    raise DuplicateIdentityError("phone")
            items.append(doc)
            self._write_json_file(self._identities_file, items)
        return identity

    @staticmethod
    def _raise_if_taken(existing: Identity | None, candidate: Identity) -> None:
        if existing is None:
            return
        if existing.email == candidate.email:
            raise DuplicateIdentityError("email")
        raise DuplicateIdentityError("phone")

    def update_identity(self, identity_id: str, **fields: Any) -> Identity | None:
        """Apply field updates to an identity and return the stored result."""
        changes = {
            key: (value.value if isinstance(value, IdentityStatus) else value)
            for key, value in fields.items()
        }
        changes.setdefault("updated_at", int(datetime.now(timezone.utc).timestamp()))
        return self._apply_changes(identity_id, changes)

    def touch_last_seen(self, identity_id: str, seen_at: int) -> None:
        """Record the latest authenticated activity without bumping ``updated_at``."""
        self._apply_changes(identity_id, {"last_seen_at": seen_at})

    def _apply_changes(self, identity_id: str, changes: dict[str, Any]) -> Identity | None:
        if self._mongo_identities is not None:
            doc = self._mongo_identities.find_one_and_update(
                {"identity_id": identity_id},
                {"$set": changes},
                projection={"_id": 0},
                return_document=pymongo.ReturnDocument.AFTER,
            )
            return Identity.model_validate(doc) if doc else None

        with self._file_lock:
            items = self._read_json_file(self._identities_file)
            updated: dict[str, Any] | None = None
            for row in items:
                if str(row.get("identity_id", "")) == identity_id:
                    row.update(changes)
                    updated = row
            if updated is None:
                return None
            self._write_json_file(self._identities_file, items)
            return Identity.model_validate(updated)

    # Refresh tokens

    def save_refresh_token(self, record: RefreshTokenRecord) -> None:
        """Save refresh token record for rotation/revocation."""
        doc = record.model_dump()
        if self._mongo_refresh is not None:
            doc["expires_at_dt"] = datetime.fromtimestamp(record.expires_at, tz=timezone.utc)
            self._mongo_refresh.update_one(
                {"token_hash": record.token_hash}, {"$set": doc}, upsert=True
            )
            return

        with self._file_lock:
            items = self._read_json_file(self._refresh_file)
            next_items = [
                row for row in items if str(row.get("token_hash", "")) != record.token_hash
            ]
            next_items.append(doc)
            self._write_json_file(self._refresh_file, next_items)

    def get_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None:
        """Get refresh token record by token hash."""
        if self._mongo_refresh is not None:
            doc = self._mongo_refresh.find_one(
                {"token_hash": token_hash}, {"_id": 0, "expires_at_dt": 0}
            )
            return RefreshTokenRecord.model_validate(doc) if doc else None

        with self._file_lock:
            for row in self._read_json_file(self._refresh_file):
                if str(row.get("token_hash", "")) == token_hash:
                    return RefreshTokenRecord.model_validate(row)
        return None

    def delete_refresh_token(self, token_hash: str, identity_id: str | None = None) -> bool:
        """Delete one record; True only for the caller that actually removed it."""
        query: dict[str, Any] = {"token_hash": token_hash}
        if identity_id is not None:
            query["identity_id"] = identity_id

        if self._mongo_refresh is not None:
            return self._mongo_refresh.delete_one(query).deleted_count == 1

        with self._file_lock:
            items = self._read_json_file(self._refresh_file)
            next_items = [
                row
                for row in items
                if not all(str(row.get(key, "")) == value for key, value in query.items())
            ]
            if len(next_items) == len(items):
                return False
            self._write_json_file(self._refresh_file, next_items)
            return True

    def delete_refresh_tokens_for_identity(self, identity_id: str) -> int:
        """Delete every refresh token record owned by an identity."""
        if self._mongo_refresh is not None:
            return int(self._mongo_refresh.delete_many({"identity_id": identity_id}).deleted_count)

        with self._file_lock:
            items = self._read_json_file(self._refresh_file)
            next_items = [row for row in items if str(row.get("identity_id", "")) != identity_id]
            removed = len(items) - len(next_items)
            if removed:
                self._write_json_file(self._refresh_file, next_items)
            return removed

    # Activity log

    def record_activity(
        self,
        identity_id: str,
        action: ActivityAction,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append one account event to the activity log."""
        doc: dict[str, Any] = {
            "activity_id": uuid.uuid4().hex,
            "identity_id": identity_id,
            "action": str(action),
            "details": dict(details or {}),
            "created_at": int(datetime.now(timezone.utc).timestamp()),
        }
        if self._mongo_activity is not None:
            self._mongo_activity.insert_one(dict(doc))
            return

        with self._file_lock:
            items = self._read_json_file(self._activity_file)
            items.append(doc)
            self._write_json_file(self._activity_file, items)

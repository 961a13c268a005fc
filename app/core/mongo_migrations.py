"""Versioned MongoDB schema migrations for identity collections."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable

import pymongo
from pymongo.errors import PyMongoError

from app.core.logging import CORRELATION_ID_CTX

MigrationFn = Callable[[Any], None]
LOGGER = logging.getLogger(__name__)

# Uniqueness only applies to records that are not soft-deleted.
_LIVE_STATUSES = {"status": {"$in": ["active", "suspended", "pending_verification"]}}


def _migration_20241205_01_identity_indexes(db: Any) -> None:
    identities = db["identities"]
    identities.create_index("identity_id", unique=True)
    identities.create_index(
        "email",
        unique=True,
        partialFilterExpression=_LIVE_STATUSES,
        name="uniq_identities_live_email",
    )
    identities.create_index(
        "phone",
        unique=True,
        partialFilterExpression=_LIVE_STATUSES,
        name="uniq_identities_live_phone",
    )


def _migration_20241205_02_refresh_tokens(db: Any) -> None:
    tokens = db["refresh_tokens"]
    tokens.create_index("token_hash", unique=True)
    tokens.create_index("identity_id")
    tokens.create_index(
        "expires_at_dt",
        expireAfterSeconds=0,
        name="idx_refresh_tokens_expires_at_ttl",
    )


def _migration_20241205_03_activity_log(db: Any) -> None:
    activity = db["activity_log"]
    activity.create_index("activity_id", unique=True)
    activity.create_index([("identity_id", pymongo.ASCENDING), ("created_at", pymongo.DESCENDING)])
    activity.create_index("action")


MIGRATIONS: list[tuple[str, MigrationFn]] = [
    ("20241205_01_identity_indexes", _migration_20241205_01_identity_indexes),
    ("20241205_02_refresh_tokens", _migration_20241205_02_refresh_tokens),
    ("20241205_03_activity_log", _migration_20241205_03_activity_log),
]


def run_migrations(db: Any) -> list[str]:
    """Apply pending migrations to an open database handle."""
    migration_collection = db["schema_migrations"]
    migration_collection.create_index("migration_id", unique=True)

    applied: list[str] = []
    for migration_id, migration_fn in MIGRATIONS:
        if migration_collection.find_one({"migration_id": migration_id}):
            continue
        migration_fn(db)
        migration_collection.insert_one(
            {
                "migration_id": migration_id,
                "applied_at": datetime.now(timezone.utc),
                "correlation_id": CORRELATION_ID_CTX.get(),
            }
        )
        applied.append(migration_id)
    return applied


def apply_mongo_migrations() -> None:
    """Apply MongoDB migrations if MONGODB_URI is configured."""
    mongo_uri = os.getenv("MONGODB_URI", "").strip()
    mongo_db = os.getenv("MONGODB_DB", "petites_annonces").strip() or "petites_annonces"
    if not mongo_uri:
        return

    client: Any = pymongo.MongoClient(mongo_uri, serverSelectionTimeoutMS=3000)
    try:
        client.admin.command("ping")
        applied = run_migrations(client[mongo_db])
        if applied:
            LOGGER.info("mongo_migrations_applied", extra={"event": ",".join(applied)})
    except PyMongoError:
        LOGGER.warning("mongo_migrations_skipped", exc_info=True)
    finally:
        client.close()

"""SQL storage for bins, schedules and routes with optimistic versioning."""
import json
import logging
from typing import Dict, List, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from core.exceptions import ConflictError
from models.serialization import (
    bin_from_dict,
    bin_to_dict,
    route_from_dict,
    route_to_dict,
    schedule_from_dict,
    schedule_to_dict,
)

logger = logging.getLogger(__name__)

TABLES = {
    "bin": "bins",
    "schedule": "schedules",
    "route": "routes",
}

_SERIALIZERS = {
    "bin": (bin_to_dict, bin_from_dict, "bin_id"),
    "schedule": (schedule_to_dict, schedule_from_dict, "schedule_id"),
    "route": (route_to_dict, route_from_dict, "route_id"),
}


class SQLStore:
    def __init__(self, database_url: str):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every checkout sees a fresh empty database
            self.engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(database_url)
        self._create_tables()

    def _create_tables(self):
        """Create necessary tables if they don't exist."""
        with self.engine.begin() as conn:
            for table in TABLES.values():
                conn.execute(text(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id VARCHAR(255) PRIMARY KEY,
                        version INTEGER NOT NULL,
                        updated_at VARCHAR(64),
                        payload TEXT NOT NULL
                    )
                """))
        logger.info("Storage tables ready")

    def save_all(self, writes: List[Tuple[str, object, int]]) -> None:
        """Persist (kind, entity, expected_version) triples in one transaction.

        A new entity (expected version 0) must not exist yet; an existing one
        is only overwritten when its stored version still equals the expected
        one. Any mismatch rolls back the whole batch with ConflictError.
        """
        with self.engine.begin() as conn:
            for kind, entity, expected_version in writes:
                to_dict, _, id_field = _SERIALIZERS[kind]
                payload = to_dict(entity)
                params = {
                    "id": payload[id_field],
                    "version": entity.version,
                    "updated_at": payload.get("updated_at"),
                    "payload": json.dumps(payload),
                    "expected": expected_version,
                }
                table = TABLES[kind]
                if expected_version == 0:
                    exists = conn.execute(
                        text(f"SELECT 1 FROM {table} WHERE id = :id"), {"id": params["id"]}
                    ).first()
                    if exists:
                        raise ConflictError(f"{kind} {params['id']} already stored")
                    conn.execute(
                        text(f"INSERT INTO {table} (id, version, updated_at, payload) "
                             f"VALUES (:id, :version, :updated_at, :payload)"),
                        params,
                    )
                else:
                    result = conn.execute(
                        text(f"UPDATE {table} SET version = :version, updated_at = :updated_at, "
                             f"payload = :payload WHERE id = :id AND version = :expected"),
                        params,
                    )
                    if result.rowcount != 1:
                        raise ConflictError(
                            f"{kind} {params['id']} changed in storage (expected version {expected_version})"
                        )

    def delete(self, kind: str, entity_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(text(f"DELETE FROM {TABLES[kind]} WHERE id = :id"), {"id": entity_id})
        logger.info(f"Deleted {kind} {entity_id} from storage")

    def load_all(self) -> Dict[str, list]:
        loaded: Dict[str, list] = {}
        with self.engine.connect() as conn:
            for kind, table in TABLES.items():
                _, from_dict, _ = _SERIALIZERS[kind]
                rows = conn.execute(text(f"SELECT payload FROM {table} ORDER BY id")).fetchall()
                loaded[kind] = [from_dict(json.loads(row[0])) for row in rows]
        return loaded

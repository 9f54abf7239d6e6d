import copy
import json
import time
import uuid
import redis
from typing import Dict, Any, Optional
from loguru import logger

from tools.errors import RecordNotFound, StoreError

PROFILE = "profile"
REELS = "reels"
WEBSITE = "website"
ANALYSIS = "analysis"

# Fields owned by each stage and their neutral values.
FIELD_GROUPS: Dict[str, Dict[str, Any]] = {
    PROFILE: {"profile": None, "has_profile": False},
    REELS: {"reels": [], "er_avg": None, "has_reels": False},
    WEBSITE: {"website_data": None, "has_website": False},
    ANALYSIS: {"ai_analysis": None, "ai_analysis_complete": False},
}

COMPLETION_FLAGS = {
    PROFILE: "has_profile",
    REELS: "has_reels",
    WEBSITE: "has_website",
    ANALYSIS: "ai_analysis_complete",
}

# Field holding the main payload of a group, used for the "already computed" check.
_PAYLOAD_FIELDS = {
    PROFILE: "profile",
    REELS: "reels",
    WEBSITE: "website_data",
    ANALYSIS: "ai_analysis",
}


def neutral_fields(stage: str) -> Dict[str, Any]:
    """Default values of a stage's field group, flag included."""
    return copy.deepcopy(FIELD_GROUPS[stage])


def build_group(stage: str, fields: Dict[str, Any], complete: bool) -> Dict[str, Any]:
    """
    Build a complete field group for a stage.

    Missing fields take their neutral value, so a write always replaces the
    whole group. Fields owned by other stages are rejected.
    """
    if stage not in FIELD_GROUPS:
        raise ValueError(f"Unknown stage: {stage}")
    flag = COMPLETION_FLAGS[stage]
    unknown = set(fields) - set(FIELD_GROUPS[stage])
    if unknown:
        raise ValueError(f"Fields {sorted(unknown)} are not owned by stage {stage}")

    group = neutral_fields(stage)
    if complete:
        group.update(copy.deepcopy({k: v for k, v in fields.items() if k != flag}))
    group[flag] = complete
    return group


def new_record(username: str, lead_id: Optional[str] = None) -> Dict[str, Any]:
    record = {
        "id": lead_id or uuid.uuid4().hex,
        "username": username,
        "created_at": int(time.time()),
    }
    for stage in FIELD_GROUPS:
        record.update(neutral_fields(stage))
    return record


def _group_has_data(record: Dict[str, Any], stage: str) -> bool:
    return bool(record.get(COMPLETION_FLAGS[stage])) and bool(record.get(_PAYLOAD_FIELDS[stage]))


class InMemoryLeadStore:
    """Process-local lead store (development and tests)."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}

    def create(self, username: str) -> Dict[str, Any]:
        record = new_record(username)
        self._records[record["id"]] = record
        logger.info(f"Created lead {record['id']} for @{username}")
        return copy.deepcopy(record)

    def get(self, lead_id: str) -> Dict[str, Any]:
        record = self._records.get(lead_id)
        if record is None:
            raise RecordNotFound(lead_id)
        return copy.deepcopy(record)

    def replace_group(self, lead_id: str, stage: str, fields: Dict[str, Any], complete: bool) -> Dict[str, Any]:
        group = build_group(stage, fields, complete)
        record = self._records.get(lead_id)
        if record is None:
            raise RecordNotFound(lead_id)
        record.update(group)
        return copy.deepcopy(group)

    def has_group_data(self, lead_id: str, stage: str) -> bool:
        return _group_has_data(self.get(lead_id), stage)

    def ping(self) -> bool:
        return True


# HSET only when the lead hash exists; returns 0 for a missing lead.
_REPLACE_GROUP_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
redis.call('HSET', KEYS[1], unpack(ARGV))
return 1
"""


class RedisLeadStore:
    """Lead store keeping one Redis hash per lead, one JSON value per field."""

    def __init__(self, client, prefix: str = "lead"):
        self.r = client
        self.prefix = prefix
        self._replace = client.register_script(_REPLACE_GROUP_SCRIPT)

    def _key(self, lead_id: str) -> str:
        return f"{self.prefix}:{lead_id}"

    def create(self, username: str) -> Dict[str, Any]:
        record = new_record(username)
        try:
            self.r.hset(self._key(record["id"]), mapping={k: json.dumps(v) for k, v in record.items()})
        except redis.RedisError as e:
            raise StoreError(f"Failed to create lead: {e}") from e
        logger.info(f"Created lead {record['id']} for @{username}")
        return record

    def get(self, lead_id: str) -> Dict[str, Any]:
        try:
            raw = self.r.hgetall(self._key(lead_id))
        except redis.RedisError as e:
            raise StoreError(f"Failed to read lead {lead_id}: {e}") from e
        if not raw:
            raise RecordNotFound(lead_id)

        record = {}
        for field, value in raw.items():
            if isinstance(field, bytes):
                field = field.decode()
            try:
                record[field] = json.loads(value)
            except (TypeError, ValueError):
                logger.warning(f"Unreadable field {field} on lead {lead_id}, using raw value")
                record[field] = value
        return record

    def replace_group(self, lead_id: str, stage: str, fields: Dict[str, Any], complete: bool) -> Dict[str, Any]:
        """Overwrite a stage's whole field group atomically (last writer wins)."""
        group = build_group(stage, fields, complete)
        args = []
        for field, value in group.items():
            args.extend([field, json.dumps(value)])
        try:
            written = self._replace(keys=[self._key(lead_id)], args=args)
        except redis.RedisError as e:
            raise StoreError(f"Failed to write {stage} for lead {lead_id}: {e}") from e
        if not written:
            raise RecordNotFound(lead_id)
        return group

    def has_group_data(self, lead_id: str, stage: str) -> bool:
        return _group_has_data(self.get(lead_id), stage)

    def ping(self) -> bool:
        try:
            return bool(self.r.ping())
        except redis.RedisError:
            return False


def build_lead_store(redis_url: Optional[str] = None):
    """Connect to Redis, falling back to an in-memory store when unavailable."""
    if not redis_url:
        logger.warning("No REDIS_URL provided, using in-memory lead store")
        return InMemoryLeadStore()

    try:
        client = redis.from_url(redis_url, decode_responses=True)
        client.ping()
        logger.info("Redis connection established successfully")
        return RedisLeadStore(client)
    except (redis.RedisError, ValueError) as e:
        logger.error(f"Redis connection failed: {e}")
        # Records will not survive a restart
        return InMemoryLeadStore()

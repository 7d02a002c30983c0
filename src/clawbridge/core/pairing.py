"""Pairing: admission control over (platform, user id) pairs.

An unknown sender receives a short pairing code; the owner approves the code
out-of-band, which turns it into a durable ``PairingRecord``. Codes live only
in memory and expire after ``code_ttl`` seconds. Records are persisted to a
JSON file keyed by ``"platform:userId"``.

The gate performs no authorization of its own: callers must check that the
principal invoking ``approve``/``revoke`` is the owner.
"""

from __future__ import annotations

import json
import os
import secrets
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from clawbridge.errors import ExpiredPairingCode, InvalidPairingCode
from clawbridge.log import get_logger

logger = get_logger(__name__)

DEFAULT_CODE_TTL = 10 * 60


def user_key(platform: str, user_id: str) -> str:
    return f"{platform}:{user_id}"


@dataclass(frozen=True)
class PairingRecord:
    platform: str
    user_id: str
    approved: bool
    paired_at: int  # unix epoch milliseconds

    @property
    def key(self) -> str:
        return user_key(self.platform, self.user_id)

    def to_json(self) -> dict:
        return {
            "platform": self.platform,
            "userId": self.user_id,
            "approved": self.approved,
            "pairedAt": self.paired_at,
        }

    @classmethod
    def from_json(cls, data: dict) -> PairingRecord:
        return cls(
            platform=str(data["platform"]),
            user_id=str(data["userId"]),
            approved=bool(data.get("approved", False)),
            paired_at=int(data.get("pairedAt", 0)),
        )


@dataclass(frozen=True)
class PairingCode:
    code: str
    platform: str
    user_id: str
    expires_at: float

    def expired(self, now: float) -> bool:
        return now > self.expires_at


class PairingStore:
    """Durable ``"platform:userId" -> PairingRecord`` mapping in a JSON file.

    Writes go to a sibling ``.tmp`` file which is then renamed over the target,
    so readers never observe a half-written file.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._write_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, PairingRecord]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return {key: PairingRecord.from_json(value) for key, value in raw.items()}
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("pairing_store_load_failed", path=str(self._path), error=str(e))
            return {}

    def save(self, records: dict[str, PairingRecord]) -> None:
        payload = {key: record.to_json() for key, record in records.items()}
        with self._write_lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)


class PairingGate:
    """Admission-control state machine backed by a ``PairingStore``."""

    def __init__(
        self,
        store: PairingStore,
        code_ttl: float = DEFAULT_CODE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._code_ttl = code_ttl
        self._clock = clock
        self._records: dict[str, PairingRecord] = store.load()
        self._pending: dict[str, PairingCode] = {}
        logger.info("pairing_loaded", records=len(self._records), path=str(store.path))

    def is_approved(self, platform: str, user_id: str) -> bool:
        record = self._records.get(user_key(platform, user_id))
        return bool(record and record.approved)

    def is_paired(self, platform: str, user_id: str) -> bool:
        return user_key(platform, user_id) in self._records

    def issue_code(self, platform: str, user_id: str) -> str:
        """Create a fresh code; earlier codes for the same user stay valid."""
        self.sweep_expired()
        code = secrets.token_hex(3).upper()
        while code in self._pending:
            code = secrets.token_hex(3).upper()
        self._pending[code] = PairingCode(
            code=code,
            platform=platform,
            user_id=user_id,
            expires_at=self._clock() + self._code_ttl,
        )
        logger.info("pairing_code_issued", platform=platform, user_id=user_id)
        return code

    def approve(self, code: str) -> PairingRecord:
        """Consume ``code`` and persist an approved record for its user."""
        code = code.strip().upper()
        pending = self._pending.get(code)
        if pending is None:
            raise InvalidPairingCode(code)
        if pending.expired(self._clock()):
            del self._pending[code]
            logger.info("pairing_code_expired", platform=pending.platform, user_id=pending.user_id)
            raise ExpiredPairingCode(code)

        record = self._put(pending.platform, pending.user_id)
        del self._pending[code]
        logger.info("pairing_approved", platform=record.platform, user_id=record.user_id)
        return record

    def approve_user(self, platform: str, user_id: str) -> PairingRecord:
        """Approve a user directly, without a code."""
        record = self._put(platform, user_id)
        logger.info("pairing_approved_direct", platform=platform, user_id=user_id)
        return record

    def revoke(self, platform: str, user_id: str) -> bool:
        """Remove a user's record. Returns False when there was nothing to remove."""
        records = dict(self._records)
        removed = records.pop(user_key(platform, user_id), None)
        self._store.save(records)
        self._records = records
        if removed is not None:
            logger.info("pairing_revoked", platform=platform, user_id=user_id)
        return removed is not None

    def list(self) -> list[PairingRecord]:
        return list(self._records.values())

    def pending(self) -> list[PairingCode]:
        self.sweep_expired()
        return list(self._pending.values())

    def sweep_expired(self) -> int:
        now = self._clock()
        expired = [code for code, pending in self._pending.items() if pending.expired(now)]
        for code in expired:
            del self._pending[code]
        return len(expired)

    def reload(self) -> None:
        self._records = self._store.load()

    def _put(self, platform: str, user_id: str) -> PairingRecord:
        record = PairingRecord(
            platform=platform,
            user_id=user_id,
            approved=True,
            paired_at=int(self._clock() * 1000),
        )
        records = dict(self._records)
        records[record.key] = record
        self._store.save(records)
        self._records = records
        return record

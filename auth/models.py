from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass


@dataclass
class PendingAuth:
    code_verifier: str
    state: str
    created_at: float

    def is_expired(self, ttl_seconds: int, *, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current - self.created_at > ttl_seconds

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> "PendingAuth":
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("Pending auth payload must be a JSON object.")
        code_verifier = payload.get("code_verifier")
        state = payload.get("state")
        created_at = payload.get("created_at")
        if not isinstance(code_verifier, str) or not isinstance(state, str):
            raise ValueError("Pending auth payload is missing verifier or state.")
        if not isinstance(created_at, (int, float)):
            raise ValueError("Pending auth payload is missing created_at.")
        return cls(code_verifier=code_verifier, state=state, created_at=float(created_at))

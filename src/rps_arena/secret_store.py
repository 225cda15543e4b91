from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path

from commit_reveal import secret_from_hex, secret_to_hex
from protocol import Choice

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitKey:
    network: int
    match_id: int
    round: int

    def __str__(self) -> str:
        return f"{self.network}-{self.match_id}-{self.round}"

    @classmethod
    def parse(cls, value: str) -> "CommitKey":
        network, match_id, round_no = value.split("-")
        return cls(network=int(network), match_id=int(match_id), round=int(round_no))


@dataclass(frozen=True)
class StoredSecret:
    choice: Choice
    secret: bytes


@dataclass
class SecretStore:
    """Move and blinding value per pending commitment.

    Without a path the store lives in memory only. With a path every
    mutation is written through to disk, so a secret committed before a
    crash can still be revealed after a restart.
    """

    _secrets: dict[CommitKey, StoredSecret] = field(default_factory=dict)
    _path: Path | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def load(cls, path: str | Path) -> "SecretStore":
        p = Path(path)
        if not p.exists():
            return cls(_path=p)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
            secrets: dict[CommitKey, StoredSecret] = {}
            for key, entry in data.get("secrets", {}).items():
                secrets[CommitKey.parse(key)] = StoredSecret(
                    choice=Choice(int(entry["choice"])),
                    secret=secret_from_hex(entry["secret"]),
                )
        except (OSError, ValueError, KeyError, AttributeError) as exc:
            logger.warning("Could not read secrets from %s (%s); starting empty", p, exc)
            return cls(_path=p)
        return cls(_secrets=secrets, _path=p)

    def save(self) -> None:
        if self._path is None:
            return
        payload = {
            "secrets": {
                str(key): {"choice": int(s.choice), "secret": secret_to_hex(s.secret)}
                for key, s in self._secrets.items()
            }
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_name(self._path.name + ".tmp")
            tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            logger.warning("Failed to persist secrets to %s: %s", self._path, exc)

    def put(self, key: CommitKey, secret: StoredSecret) -> StoredSecret:
        with self._lock:
            existing = self._secrets.get(key)
            if existing is not None:
                return existing
            self._secrets[key] = secret
            self.save()
            return secret

    def get(self, key: CommitKey) -> StoredSecret | None:
        with self._lock:
            return self._secrets.get(key)

    def delete(self, key: CommitKey) -> None:
        with self._lock:
            if self._secrets.pop(key, None) is not None:
                self.save()

    def __len__(self) -> int:
        return len(self._secrets)


def default_secrets_path() -> str:
    home = os.path.expanduser("~")
    return os.path.join(home, ".wof-rps-secrets.json")

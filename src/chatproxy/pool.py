import logging
import random
import threading
from collections.abc import Collection, Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    id: str
    secret: str

    def __repr__(self) -> str:
        return f"Credential(id={self.id!r})"


class CredentialPool:
    """Upstream API keys shared by every in-flight request.

    Reads take a snapshot of the current mapping without locking; writes
    swap in a new mapping under ``_write_lock``. Eviction of an id that is
    already gone is a no-op, so two requests evicting the same key never
    conflict.
    """

    def __init__(
        self,
        credentials: Iterable[Credential] = (),
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._credentials: dict[str, Credential] = {}
        self._write_lock = threading.Lock()
        self._rng = rng or random.SystemRandom()
        for credential in credentials:
            self._credentials[credential.id] = credential

    def __len__(self) -> int:
        return len(self._credentials)

    def __contains__(self, credential_id: object) -> bool:
        return credential_id in self._credentials

    def ids(self) -> list[str]:
        return sorted(self._credentials)

    def select(self, exclude: Collection[str] = ()) -> Credential | None:
        """Pick uniformly among credentials whose id is not in ``exclude``."""
        snapshot = self._credentials
        candidates = [
            credential for key, credential in snapshot.items() if key not in exclude
        ]
        if not candidates:
            return None
        return self._rng.choice(candidates)

    def evict(self, credential_id: str) -> bool:
        with self._write_lock:
            if credential_id not in self._credentials:
                return False
            updated = dict(self._credentials)
            del updated[credential_id]
            self._credentials = updated
        logger.warning("credential.evicted id=%s remaining=%d", credential_id, len(updated))
        return True

    def add(self, credential: Credential) -> None:
        with self._write_lock:
            updated = dict(self._credentials)
            updated[credential.id] = credential
            self._credentials = updated

    def replace(self, credentials: Iterable[Credential]) -> None:
        fresh = {credential.id: credential for credential in credentials}
        with self._write_lock:
            self._credentials = fresh
        logger.info("credential.pool reloaded count=%d", len(fresh))

"""
Référence de paiement en attente, une par propriétaire.
- Enregistrée après l'initialisation Paystack, avant la redirection du navigateur.
- Relue au retour (ou depuis un autre onglet) pour l'action « vérifier le paiement ».
- Effacée uniquement après une issue terminale (réconcilié ou échoué).
Stockage durable: Redis (survit au redémarrage du process); mémoire en développement.
"""
import json
import logging
from typing import Any, Dict, Optional, Protocol

from redis.exceptions import WatchError

from .models import utcnow

logger = logging.getLogger(__name__)

KEY_PREFIX = "pending_payment:"


def pending_key(owner_id: str) -> str:
    return f"{KEY_PREFIX}{owner_id}"


class PendingReferenceStore(Protocol):
    async def save(self, reference: str, owner_id: str) -> None: ...

    async def load(self, owner_id: str) -> Optional[str]: ...

    async def clear(self, owner_id: str, reference: Optional[str] = None) -> bool: ...


def _record(reference: str, owner_id: str) -> Dict[str, Any]:
    return {"reference": reference, "owner_id": owner_id, "saved_at": utcnow().isoformat()}


def _reference_of(raw: Any, owner_id: str) -> Optional[str]:
    if not raw:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        return (json.loads(raw) or {}).get("reference")
    except ValueError:
        logger.error("pending.corrupted owner=%s value=%r", owner_id, raw)
        return None


class RedisPendingReferenceStore:
    """
    Clé `pending_payment:<owner_id>`, valeur JSON {reference, owner_id, saved_at}, sans expiration.
    Le client est un redis.asyncio.Redis (ou fakeredis.aioredis.FakeRedis en tests).
    """

    def __init__(self, redis_client):
        self.redis = redis_client

    async def save(self, reference: str, owner_id: str) -> None:
        await self.redis.set(pending_key(owner_id), json.dumps(_record(reference, owner_id)))
        logger.info("pending.saved owner=%s reference=%s", owner_id, reference)

    async def load(self, owner_id: str) -> Optional[str]:
        return _reference_of(await self.redis.get(pending_key(owner_id)), owner_id)

    async def clear(self, owner_id: str, reference: Optional[str] = None) -> bool:
        """
        Efface la référence en attente.
        Si `reference` est fourni, n'efface que si c'est bien celle enregistrée: lecture et
        suppression dans une transaction WATCH/MULTI. Une nouvelle tentative enregistrée
        entre-temps (autre onglet) fait échouer la transaction et reste en place.
        """
        key = pending_key(owner_id)
        if reference is None:
            return bool(await self.redis.delete(key))

        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                if _reference_of(await pipe.get(key), owner_id) != reference:
                    return False
                pipe.multi()
                pipe.delete(key)
                deleted, = await pipe.execute()
            except WatchError:
                logger.info("pending.clear_skipped owner=%s reference=%s replaced", owner_id, reference)
                return False
        return bool(deleted)


class InMemoryPendingReferenceStore:
    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}

    async def save(self, reference: str, owner_id: str) -> None:
        self._records[owner_id] = _record(reference, owner_id)

    async def load(self, owner_id: str) -> Optional[str]:
        record = self._records.get(owner_id)
        return record["reference"] if record else None

    async def clear(self, owner_id: str, reference: Optional[str] = None) -> bool:
        record = self._records.get(owner_id)
        if not record or (reference is not None and record["reference"] != reference):
            return False
        del self._records[owner_id]
        return True

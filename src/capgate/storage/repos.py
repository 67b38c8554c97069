from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from capgate.cache.config_cache import ConfigCache
from capgate.core.errors import ConfigNotFoundError
from capgate.domain.chat import Capability
from capgate.domain.models import ModelConfig, ProtocolFamily
from capgate.security.vault import CredentialVault
from capgate.storage.base import ConfigStore
from capgate.storage.models import ModelConfigDefault, ModelConfigRow

log = logging.getLogger(__name__)


def _capabilities(values: Iterable[str] | None) -> list[Capability]:
    out: list[Capability] = []
    for value in values or []:
        try:
            out.append(Capability(value))
        except ValueError:
            log.warning("store.unknown_capability", extra={"capability": value})
    return out


def row_to_config(row: ModelConfigRow) -> ModelConfig:
    return ModelConfig(
        id=str(row.id),
        name=row.name,
        model=row.model,
        base_url=row.base_url or "",
        encrypted_api_key=row.encrypted_api_key or "",
        temperature=row.temperature,
        capabilities=_capabilities(row.capabilities),
        protocol_family=ProtocolFamily(row.protocol_family),
        default_for=sorted(_capabilities(d.capability for d in row.defaults), key=lambda c: c.value),
    )


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _pointer_keys(capabilities: Iterable[Capability]) -> list[Capability | None]:
    keys: list[Capability | None] = list(capabilities)
    if Capability.CHAT in keys:
        keys.append(None)
    return keys


class SqlConfigStore(ConfigStore):
    """Postgres-backed store. Write paths invalidate the read-through cache synchronously."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        *,
        cache: ConfigCache,
        vault: CredentialVault | None = None,
    ):
        self._sessionmaker = sessionmaker
        self._cache = cache
        self._vault = vault

    async def get_by_id(self, config_id: str) -> ModelConfig | None:
        if not _is_uuid(config_id):
            return None
        async with self._sessionmaker() as session:
            row = await session.get(ModelConfigRow, config_id)
            return row_to_config(row) if row is not None else None

    async def get_default(self, capability: Capability) -> ModelConfig | None:
        stmt = (
            select(ModelConfigRow)
            .join(ModelConfigDefault, ModelConfigDefault.config_id == ModelConfigRow.id)
            .where(ModelConfigDefault.capability == capability.value)
        )
        async with self._sessionmaker() as session:
            row = (await session.execute(stmt)).scalars().first()
        if row is None:
            return None
        config = row_to_config(row)
        # A pointer left behind by a capability edit is not a default.
        if not config.serves(capability):
            log.warning("store.stale_default_pointer", extra={"capability": capability.value, "config_id": config.id})
            return None
        return config

    async def get_global_default(self) -> ModelConfig | None:
        return await self.get_default(Capability.CHAT)

    async def list_configs(self, capability: Capability | None = None) -> list[ModelConfig]:
        stmt = select(ModelConfigRow).order_by(ModelConfigRow.created_at, ModelConfigRow.id)
        async with self._sessionmaker() as session:
            rows = (await session.execute(stmt)).scalars().all()
        configs = [row_to_config(r) for r in rows]
        if capability is not None:
            configs = [c for c in configs if c.serves(capability)]
        return configs

    async def set_default(self, config_id: str, capability: Capability) -> ModelConfig:
        if not _is_uuid(config_id):
            raise ConfigNotFoundError(f"Model config {config_id} not found")
        async with self._sessionmaker() as session:
            row = await session.get(ModelConfigRow, config_id)
            if row is None:
                raise ConfigNotFoundError(f"Model config {config_id} not found")
            if capability.value not in (row.capabilities or []):
                raise ValueError(f"Model config {config_id} does not serve capability {capability.value}")

            pointer = await session.get(ModelConfigDefault, capability.value)
            previous_id = pointer.config_id if pointer is not None else None
            if pointer is None:
                session.add(ModelConfigDefault(capability=capability.value, config_id=config_id))
            else:
                pointer.config_id = config_id
            await session.commit()

        await self._cache.invalidate(config_id, _pointer_keys([capability]))
        if previous_id and previous_id != config_id:
            await self._cache.invalidate(previous_id)
        log.info("store.default_set", extra={"config_id": config_id, "capability": capability.value})

        config = await self.get_by_id(config_id)
        if config is None:
            raise ConfigNotFoundError(f"Model config {config_id} not found")
        return config

    async def create_config(
        self,
        *,
        name: str,
        model: str,
        api_key: str,
        base_url: str = "",
        temperature: float | None = None,
        capabilities: Iterable[Capability] = (Capability.CHAT,),
        protocol_family: ProtocolFamily = ProtocolFamily.OPENAI_COMPATIBLE,
    ) -> ModelConfig:
        """Persist a config; the plaintext key is encrypted here and never stored."""
        if self._vault is None:
            raise RuntimeError("SqlConfigStore needs a vault to write credentials")
        row = ModelConfigRow(
            name=name,
            model=model,
            base_url=base_url,
            encrypted_api_key=self._vault.encrypt(api_key),
            temperature=temperature,
            capabilities=[c.value for c in capabilities],
            protocol_family=protocol_family.value,
        )
        async with self._sessionmaker() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row, attribute_names=["defaults"])
            config = row_to_config(row)
        log.info("store.config_created", extra={"config_id": config.id, "protocol": protocol_family.value})
        return config

    async def delete_config(self, config_id: str) -> bool:
        if not _is_uuid(config_id):
            return False
        async with self._sessionmaker() as session:
            row = await session.get(ModelConfigRow, config_id)
            if row is None:
                return False
            was_default_for = _capabilities(d.capability for d in row.defaults)
            await session.delete(row)
            await session.commit()

        # Deleted configs must not survive in the cache past this call.
        try:
            await self._cache.invalidate(config_id, _pointer_keys(was_default_for))
        except Exception:
            log.error("store.cache_invalidate_failed", extra={"config_id": config_id})
            raise
        log.info("store.config_deleted", extra={"config_id": config_id})
        return True

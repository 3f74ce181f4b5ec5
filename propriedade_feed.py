# propriedade_feed.py
"""
Informação da propriedade "ao vivo" para as páginas públicas.

O rodapé e a home leem daqui em vez de ir ao Supabase em cada pedido.
O Supabase Realtime avisa quando a linha da propriedade muda (UPDATE,
o payload já traz a linha nova) ou quando as comodidades selecionadas
mudam (aí só marcamos como desatualizadas e relemos no próximo acesso).
"""
import asyncio
import logging
import os
import threading
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError
from supabase import AsyncClient, acreate_client

from database import SUPABASE_KEY, SUPABASE_URL
from models import Comodidade, Propriedade, PropriedadeWithAmenities

logger = logging.getLogger(__name__)

ENABLE_REALTIME = os.getenv("ENABLE_REALTIME", "1") == "1"


async def create_realtime_client() -> AsyncClient:
    return await acreate_client(SUPABASE_URL, SUPABASE_KEY)


def extract_record(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Linha nova de um evento postgres_changes."""
    data = payload.get("data", payload) if isinstance(payload, dict) else {}
    return data.get("record") or data.get("new")


class PropriedadeFeed:
    def __init__(
        self,
        propriedade_service,
        client_factory: Callable[[], Awaitable[AsyncClient]] = create_realtime_client,
    ):
        self._service = propriedade_service
        self._client_factory = client_factory
        self._lock = threading.Lock()
        self._propriedade: Optional[Propriedade] = None
        self._comodidades: Optional[List[Comodidade]] = None
        self._client: Optional[AsyncClient] = None
        self._channels: list = []

    @property
    def live(self) -> bool:
        return bool(self._channels)

    # =====================================================================
    # CICLO DE VIDA
    # =====================================================================

    async def start(self) -> None:
        # leitura síncrona do Supabase fora do event loop
        await asyncio.to_thread(self.refresh)

        self._client = await self._client_factory()

        propriedade_channel = self._client.channel("propriedade_changes")
        propriedade_channel.on_postgres_changes(
            "UPDATE",
            schema="public",
            table="propriedade",
            callback=self._on_propriedade_update,
        )
        await propriedade_channel.subscribe()
        self._channels.append(propriedade_channel)

        comodidades_channel = self._client.channel("comodidades_changes")
        comodidades_channel.on_postgres_changes(
            "*",
            schema="public",
            table="propriedade_comodidades",
            callback=self._on_comodidades_change,
        )
        await comodidades_channel.subscribe()
        self._channels.append(comodidades_channel)

        logger.info("Realtime da propriedade ativo")

    async def stop(self) -> None:
        channels, self._channels = self._channels, []
        for channel in channels:
            await channel.unsubscribe()
        client, self._client = self._client, None
        if client is not None:
            # fecha o websocket do realtime
            await client.remove_all_channels()

    # =====================================================================
    # EVENTOS
    # =====================================================================

    def _on_propriedade_update(self, payload: Dict[str, Any]) -> None:
        record = extract_record(payload)
        if not record:
            return
        try:
            propriedade = Propriedade.model_validate(record)
        except ValidationError:
            logger.warning("Evento de propriedade ignorado: %r", record)
            return
        with self._lock:
            if self._propriedade is not None and self._propriedade.id != propriedade.id:
                return
            self._propriedade = propriedade
        logger.debug("Propriedade %s atualizada via realtime", propriedade.id)

    def _on_comodidades_change(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._comodidades = None

    # =====================================================================
    # LEITURA
    # =====================================================================

    def refresh(self) -> Optional[PropriedadeWithAmenities]:
        atual = self._service.get_with_amenities()
        with self._lock:
            if atual is None:
                self._propriedade, self._comodidades = None, None
            else:
                self._propriedade = Propriedade(**atual.model_dump(exclude={"comodidades"}))
                self._comodidades = list(atual.comodidades)
        return atual

    def current(self) -> Optional[PropriedadeWithAmenities]:
        if not self.live:
            return self._service.get_with_amenities()

        with self._lock:
            propriedade, comodidades = self._propriedade, self._comodidades

        if propriedade is None:
            return self.refresh()

        if comodidades is None:
            atual = self._service.get_with_amenities(propriedade.id)
            comodidades = list(atual.comodidades) if atual else []
            with self._lock:
                self._comodidades = comodidades

        return PropriedadeWithAmenities(**propriedade.model_dump(), comodidades=comodidades)

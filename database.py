# database.py
import logging
import os
from datetime import date
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
from postgrest.exceptions import APIError
from postgrest.types import ReturnMethod
from pydantic import BaseModel
from supabase import Client, ClientOptions, create_client

from models import (
    Comodidade, ImagemInput, ImagemQuarto, Propriedade,
    PropriedadeWithAmenities, Quarto, QuartoWithImages, Reserva,
)

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# SUPABASE
# - SUPABASE_URL / SUPABASE_KEY (anon key): vêm do Environment Variables
# - As tabelas, RLS e o auth ficam todos no projeto Supabase
# -----------------------------------------------------------------------------
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")

# Código do PostgREST para ".single()" sem linhas
NOT_FOUND_CODE = "PGRST116"


class RepositoryError(Exception):
    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Falha em {operation}: {cause}" if cause else f"Falha em {operation}")


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """Cliente anónimo partilhado (páginas públicas)."""
    if not SUPABASE_URL or not SUPABASE_KEY:
        raise RuntimeError("SUPABASE_URL e SUPABASE_KEY precisam estar configurados.")
    return create_client(SUPABASE_URL, SUPABASE_KEY)


def get_user_client(access_token: str) -> Client:
    """
    Cliente com o token do admin logado, para as políticas RLS do Supabase.
    Um cliente por pedido: a sessão nunca fica no cliente partilhado.
    """
    options = ClientOptions(
        headers={"Authorization": f"Bearer {access_token}"},
        auto_refresh_token=False,
        persist_session=False,
    )
    return create_client(SUPABASE_URL, SUPABASE_KEY, options=options)


def create_auth_client() -> Client:
    options = ClientOptions(auto_refresh_token=False, persist_session=False)
    return create_client(SUPABASE_URL, SUPABASE_KEY, options=options)


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


# -----------------------------------------------------------------------------
# REPOSITÓRIO BASE
# -----------------------------------------------------------------------------

class SupabaseRepository:
    table_name: str = ""
    select_fields: str = "*"
    entity = BaseModel
    writable_fields: Tuple[str, ...] = ()
    order_column: str = "id"
    order_desc: bool = False

    def __init__(self, client: Client):
        self.client = client

    # --- hooks das subclasses ---

    def to_entity(self, row: Dict[str, Any]):
        return self.entity.model_validate(row)

    def to_row(self, data) -> Dict[str, Any]:
        """Só os campos que vieram (update parcial não apaga o resto)."""
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        return {
            key: _serialize(value)
            for key, value in data.items()
            if key in self.writable_fields
        }

    # --- utilitários ---

    def table(self, name: Optional[str] = None):
        return self.client.table(name or self.table_name)

    def execute(self, operation: str, query):
        try:
            return query.execute()
        except (APIError, httpx.HTTPError) as e:
            self.handle_error(operation, e)
            raise RepositoryError(f"{type(self).__name__}.{operation}", e) from e

    def handle_error(self, operation: str, error: BaseException) -> None:
        logger.error("Erro em %s.%s: %r", type(self).__name__, operation, error)

    def map_rows(self, rows: Optional[Iterable[Dict[str, Any]]]) -> list:
        return [self.to_entity(row) for row in rows or []]

    # --- CRUD ---

    def find_by_id(self, id: int):
        query = self.table().select(self.select_fields).eq("id", id).single()
        try:
            response = query.execute()
        except APIError as e:
            if e.code == NOT_FOUND_CODE:
                return None
            self.handle_error("find_by_id", e)
            raise RepositoryError(f"{type(self).__name__}.find_by_id", e) from e
        except httpx.HTTPError as e:
            self.handle_error("find_by_id", e)
            raise RepositoryError(f"{type(self).__name__}.find_by_id", e) from e
        return self.to_entity(response.data) if response.data else None

    def find_all(self) -> list:
        query = (
            self.table()
            .select(self.select_fields)
            .order(self.order_column, desc=self.order_desc)
        )
        return self.map_rows(self.execute("find_all", query).data)

    def create(self, data):
        response = self.execute("create", self.table().insert(self.to_row(data)))
        if not response.data:
            raise RepositoryError(f"{type(self).__name__}.create")
        return self._reload(response.data[0])

    def insert(self, data) -> None:
        """Insert sem pedir a linha de volta (o anónimo pode gravar sem poder ler)."""
        row = self.to_row(data)
        self.execute("insert", self.table().insert(row, returning=ReturnMethod.minimal))

    def update(self, id: int, data):
        response = self.execute("update", self.table().update(self.to_row(data)).eq("id", id))
        if not response.data:
            raise RepositoryError(f"{type(self).__name__}.update")
        return self._reload(response.data[0])

    def delete(self, id: int) -> None:
        self.execute("delete", self.table().delete().eq("id", id))

    def _reload(self, row: Dict[str, Any]):
        # insert/update devolvem só as colunas da tabela; com join, relê
        if self.select_fields == "*":
            return self.to_entity(row)
        return self.find_by_id(row["id"])


# -----------------------------------------------------------------------------
# QUARTOS
# -----------------------------------------------------------------------------

class QuartoRepository(SupabaseRepository):
    table_name = "quartos"
    images_table = "imagens_quartos"
    entity = Quarto
    writable_fields = (
        "nome", "descricao", "preco_noite", "capacidade",
        "tamanho_m2", "comodidades", "disponivel",
    )

    def find_by_availability(self, disponivel: bool) -> List[Quarto]:
        query = (
            self.table()
            .select(self.select_fields)
            .eq("disponivel", disponivel)
            .order("id", desc=False)
        )
        return self.map_rows(self.execute("find_by_availability", query).data)

    def find_images(self, quarto_id: int) -> List[ImagemQuarto]:
        query = (
            self.table(self.images_table)
            .select("*")
            .eq("quarto_id", quarto_id)
            .order("ordem", desc=False)
        )
        rows = self.execute("find_images", query).data or []
        return [ImagemQuarto.model_validate(row) for row in rows]

    def find_with_images(self, id: int) -> Optional[QuartoWithImages]:
        quarto = self.find_by_id(id)
        if quarto is None:
            return None
        return QuartoWithImages(**quarto.model_dump(), imagens=self.find_images(id))

    def find_all_with_cover(self) -> List[Tuple[Quarto, Optional[str]]]:
        """Quartos + URL da primeira imagem (ordem mais baixa) de cada um."""
        quartos = self.find_all()
        if not quartos:
            return []

        query = (
            self.table(self.images_table)
            .select("quarto_id, url, ordem")
            .in_("quarto_id", [q.id for q in quartos])
            .order("ordem", desc=False)
        )
        capas: Dict[int, str] = {}
        for row in self.execute("find_all_with_cover", query).data or []:
            capas.setdefault(row["quarto_id"], row["url"])

        return [(q, capas.get(q.id)) for q in quartos]

    def delete_images(self, quarto_id: int) -> None:
        self.execute(
            "delete_images",
            self.table(self.images_table).delete().eq("quarto_id", quarto_id),
        )

    def replace_images(self, quarto_id: int, imagens: List[ImagemInput]) -> None:
        self.delete_images(quarto_id)
        if not imagens:
            return
        rows = [
            {"quarto_id": quarto_id, "url": img.url, "ordem": img.ordem}
            for img in imagens
        ]
        self.execute("replace_images", self.table(self.images_table).insert(rows))


# -----------------------------------------------------------------------------
# RESERVAS
# -----------------------------------------------------------------------------

class ReservaRepository(SupabaseRepository):
    table_name = "reservas"
    select_fields = "*, quarto:quarto_id (id, nome, preco_noite)"
    entity = Reserva
    order_column = "created_at"
    order_desc = True
    writable_fields = (
        "quarto_id", "nome_hospede", "email_hospede", "telefone_hospede",
        "data_checkin", "data_checkout", "num_hospedes", "mensagem", "estado",
    )

    def find_by_status(self, estado: str) -> List[Reserva]:
        query = (
            self.table()
            .select(self.select_fields)
            .eq("estado", _serialize(estado))
            .order("created_at", desc=True)
        )
        return self.map_rows(self.execute("find_by_status", query).data)

    def find_by_quarto(self, quarto_id: int) -> List[Reserva]:
        query = (
            self.table()
            .select(self.select_fields)
            .eq("quarto_id", quarto_id)
            .order("data_checkin", desc=False)
        )
        return self.map_rows(self.execute("find_by_quarto", query).data)

    def find_by_date_range(self, start: date, end: date) -> List[Reserva]:
        query = (
            self.table()
            .select(self.select_fields)
            .gte("data_checkin", start.isoformat())
            .lte("data_checkout", end.isoformat())
            .order("data_checkin", desc=False)
        )
        return self.map_rows(self.execute("find_by_date_range", query).data)

    def find_recent(self, limit: int = 5) -> List[Reserva]:
        query = (
            self.table()
            .select(self.select_fields)
            .order("created_at", desc=True)
            .limit(limit)
        )
        return self.map_rows(self.execute("find_recent", query).data)

    def count_by_status(self, estado: str) -> int:
        query = self.table().select("id", count="exact").eq("estado", _serialize(estado))
        return self.execute("count_by_status", query).count or 0


# -----------------------------------------------------------------------------
# PROPRIEDADE / COMODIDADES
# -----------------------------------------------------------------------------

LINK_TABLE = "propriedade_comodidades"


def _comodidades_da_propriedade(repo: SupabaseRepository, propriedade_id: int) -> List[Comodidade]:
    query = (
        repo.table(LINK_TABLE)
        .select("comodidade:comodidade_id (id, nome, descricao, icone)")
        .eq("propriedade_id", propriedade_id)
    )
    rows = repo.execute("find_by_property", query).data or []
    comodidades = [Comodidade.model_validate(r["comodidade"]) for r in rows if r.get("comodidade")]
    return sorted(comodidades, key=lambda c: c.nome.lower())


class PropriedadeRepository(SupabaseRepository):
    table_name = "propriedade"
    entity = Propriedade
    writable_fields = (
        "nome", "descricao", "morada", "sobre_footer", "telefone", "email",
        "horario_checkin", "horario_checkout", "horario_rececao",
        "hero_image_url", "titulo_quartos", "descricao_quartos",
        "titulo_comodidades", "descricao_comodidades",
        "link_externo_url", "link_externo_texto",
    )

    def get_current(self) -> Optional[Propriedade]:
        """A propriedade é um registo único: fica a primeira por id."""
        query = self.table().select("*").order("id", desc=False).limit(1)
        rows = self.execute("get_current", query).data or []
        return self.to_entity(rows[0]) if rows else None

    def find_with_amenities(self, id: int) -> Optional[PropriedadeWithAmenities]:
        propriedade = self.find_by_id(id)
        if propriedade is None:
            return None
        return PropriedadeWithAmenities(
            **propriedade.model_dump(),
            comodidades=_comodidades_da_propriedade(self, id),
        )

    def amenity_ids(self, id: int) -> List[int]:
        query = self.table(LINK_TABLE).select("comodidade_id").eq("propriedade_id", id)
        return [r["comodidade_id"] for r in self.execute("amenity_ids", query).data or []]

    def add_amenity(self, id: int, comodidade_id: int) -> None:
        row = {"propriedade_id": id, "comodidade_id": comodidade_id}
        self.execute("add_amenity", self.table(LINK_TABLE).insert(row))

    def remove_amenity(self, id: int, comodidade_id: int) -> None:
        query = (
            self.table(LINK_TABLE)
            .delete()
            .eq("propriedade_id", id)
            .eq("comodidade_id", comodidade_id)
        )
        self.execute("remove_amenity", query)

    def update_amenities(self, id: int, amenity_ids: List[int]) -> None:
        self.execute("update_amenities", self.table(LINK_TABLE).delete().eq("propriedade_id", id))
        rows = [{"propriedade_id": id, "comodidade_id": cid} for cid in dict.fromkeys(amenity_ids)]
        if rows:
            self.execute("update_amenities", self.table(LINK_TABLE).insert(rows))


class ComodidadeRepository(SupabaseRepository):
    table_name = "comodidades"
    entity = Comodidade
    order_column = "nome"
    writable_fields = ("nome", "descricao", "icone")

    def find_by_property(self, propriedade_id: int) -> List[Comodidade]:
        return _comodidades_da_propriedade(self, propriedade_id)

    def delete(self, id: int) -> None:
        # tira das propriedades primeiro (FK em propriedade_comodidades)
        self.execute("delete", self.table(LINK_TABLE).delete().eq("comodidade_id", id))
        super().delete(id)

# models.py
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


# -----------------------------------------------------------------------------
# QUARTOS
# -----------------------------------------------------------------------------

class Quarto(BaseModel):
    id: int
    nome: str
    descricao: str
    preco_noite: float
    capacidade: int
    tamanho_m2: float
    comodidades: List[str] = Field(default_factory=list)  # ex: ["Wi-Fi", "TV"]
    disponivel: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ImagemQuarto(BaseModel):
    id: int
    quarto_id: int
    url: str
    ordem: int = 0
    created_at: Optional[datetime] = None


class QuartoWithImages(Quarto):
    imagens: List[ImagemQuarto] = Field(default_factory=list)

    @property
    def imagem_principal(self) -> Optional[str]:
        return self.imagens[0].url if self.imagens else None


class QuartoResumo(BaseModel):
    """Campos do quarto que vêm junto com a reserva (join quarto_id)."""
    id: int
    nome: str
    preco_noite: Optional[float] = None


class ImagemInput(BaseModel):
    url: str
    ordem: int


class CreateQuartoData(BaseModel):
    nome: str = ""
    descricao: str = ""
    preco_noite: float = 0
    capacidade: int = 0
    tamanho_m2: float = 0
    comodidades: List[str] = Field(default_factory=list)
    disponivel: bool = True
    imagens: List[ImagemInput] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# RESERVAS
# -----------------------------------------------------------------------------

class ReservaStatus(str, Enum):
    PENDENTE = "pendente"
    CONFIRMADA = "confirmada"
    CANCELADA = "cancelada"
    CONCLUIDA = "concluida"


class Reserva(BaseModel):
    id: int
    quarto_id: int
    nome_hospede: str
    email_hospede: str
    telefone_hospede: str
    data_checkin: date
    data_checkout: date
    num_hospedes: int
    mensagem: Optional[str] = None
    estado: ReservaStatus = ReservaStatus.PENDENTE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    quarto: Optional[QuartoResumo] = None

    @property
    def noites(self) -> int:
        return (self.data_checkout - self.data_checkin).days


class CreateReservaData(BaseModel):
    quarto_id: Optional[int] = None
    nome_hospede: str = ""
    email_hospede: str = ""
    telefone_hospede: str = ""
    data_checkin: Optional[date] = None
    data_checkout: Optional[date] = None
    num_hospedes: Optional[int] = None
    mensagem: Optional[str] = None


# -----------------------------------------------------------------------------
# PROPRIEDADE / COMODIDADES
# -----------------------------------------------------------------------------

class Comodidade(BaseModel):
    id: int
    nome: str
    descricao: str = ""
    icone: str = "CheckCircle"
    created_at: Optional[datetime] = None


class Propriedade(BaseModel):
    id: int
    nome: str
    descricao: str = ""
    morada: str = ""
    sobre_footer: str = ""
    telefone: str = ""
    email: str = ""
    horario_checkin: str = ""
    horario_checkout: str = ""
    horario_rececao: str = ""
    hero_image_url: Optional[str] = None
    titulo_quartos: Optional[str] = None
    descricao_quartos: Optional[str] = None
    titulo_comodidades: Optional[str] = None
    descricao_comodidades: Optional[str] = None
    link_externo_url: Optional[str] = None
    link_externo_texto: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PropriedadeWithAmenities(Propriedade):
    comodidades: List[Comodidade] = Field(default_factory=list)


# Campos editáveis no painel (tudo menos id/created_at)
PROPRIEDADE_CAMPOS_OBRIGATORIOS = ("nome", "descricao", "morada")
PROPRIEDADE_CAMPOS_OPCIONAIS = (
    "hero_image_url",
    "titulo_quartos",
    "descricao_quartos",
    "titulo_comodidades",
    "descricao_comodidades",
    "link_externo_url",
    "link_externo_texto",
)
PROPRIEDADE_CAMPOS_TEXTO = (
    "sobre_footer",
    "telefone",
    "email",
    "horario_checkin",
    "horario_checkout",
    "horario_rececao",
)


# -----------------------------------------------------------------------------
# NOTIFICAÇÕES
# -----------------------------------------------------------------------------

class Notificacao(BaseModel):
    tipo: str  # "email" | "sms" | "push"
    destinatario: str
    assunto: Optional[str] = None
    mensagem: str
    dados: dict = Field(default_factory=dict)

# validators.py
"""
Validação dos dados que chegam dos formulários (quartos, reservas,
comodidades e propriedade).

Cada validador junta TODOS os erros encontrados numa lista, para o
formulário poder mostrar tudo de uma vez.
"""
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, List, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_HOSPEDES = 10
MAX_CAPACIDADE = 10
MAX_MENSAGEM = 500


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def sanitize_input(text: Optional[str]) -> str:
    """Remove < e > (evita HTML injetado) e espaços nas pontas."""
    if not text:
        return ""
    return re.sub(r"[<>]", "", text).strip()


def is_valid_url(url: Any) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _as_dict(data: Any) -> Mapping[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return data or {}


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


# =========================================================================
# QUARTO
# =========================================================================

class QuartoValidator:
    def validate(self, data) -> ValidationResult:
        d = _as_dict(data)
        errors: List[str] = []

        nome = _text(d.get("nome"))
        if len(nome.strip()) < 3:
            errors.append("Nome deve ter pelo menos 3 caracteres")
        if len(nome) > 100:
            errors.append("Nome não pode ter mais de 100 caracteres")

        descricao = _text(d.get("descricao"))
        if len(descricao.strip()) < 10:
            errors.append("Descrição deve ter pelo menos 10 caracteres")
        if len(descricao) > 1000:
            errors.append("Descrição não pode ter mais de 1000 caracteres")

        preco = _number(d.get("preco_noite"))
        if not preco or preco <= 0:
            errors.append("Preço por noite deve ser maior que zero")

        capacidade = _number(d.get("capacidade"))
        if not capacidade or capacidade <= 0:
            errors.append("Capacidade deve ser maior que zero")
        if capacidade is not None and capacidade > MAX_CAPACIDADE:
            errors.append(f"Capacidade não pode ser maior que {MAX_CAPACIDADE}")

        tamanho = _number(d.get("tamanho_m2"))
        if not tamanho or tamanho <= 0:
            errors.append("Tamanho deve ser maior que zero")

        if not isinstance(d.get("comodidades"), list):
            errors.append("Comodidades deve ser um array")

        imagens = d.get("imagens")
        if not isinstance(imagens, list):
            errors.append("Imagens deve ser um array")
        else:
            for index, img in enumerate(imagens, start=1):
                img = _as_dict(img)
                if not is_valid_url(img.get("url")):
                    errors.append(f"Imagem {index}: URL inválida")
                ordem = img.get("ordem")
                if not isinstance(ordem, int) or isinstance(ordem, bool) or ordem < 0:
                    errors.append(f"Imagem {index}: Ordem deve ser um número não negativo")

        return ValidationResult(errors)


# =========================================================================
# RESERVA
# =========================================================================

class ReservaValidator:
    def __init__(self, today: Optional[Callable[[], date]] = None):
        # "hoje" injetável para os testes
        self._today = today or date.today

    def validate(self, data) -> ValidationResult:
        d = _as_dict(data)
        errors: List[str] = []

        nome = _text(d.get("nome_hospede"))
        if len(nome.strip()) < 3:
            errors.append("Nome deve ter pelo menos 3 caracteres")
        if len(nome) > 100:
            errors.append("Nome não pode ter mais de 100 caracteres")

        email = _text(d.get("email_hospede"))
        if not EMAIL_RE.match(email):
            errors.append("Email inválido")

        if not _text(d.get("telefone_hospede")).strip():
            errors.append("Telefone é obrigatório")

        hospedes = _number(d.get("num_hospedes"))
        if not hospedes or hospedes < 1:
            errors.append("Deve ter pelo menos 1 hóspede")
        if hospedes is not None and hospedes > MAX_HOSPEDES:
            errors.append(f"Não pode exceder {MAX_HOSPEDES} hóspedes")

        checkin = d.get("data_checkin")
        checkout = d.get("data_checkout")
        if not checkin:
            errors.append("Data de check-in é obrigatória")
        elif checkin < self._today():
            errors.append("Data de check-in não pode ser no passado")

        if not checkout:
            errors.append("Data de check-out é obrigatória")
        elif checkin and checkout <= checkin:
            errors.append("Data de check-out deve ser posterior à data de check-in")

        mensagem = _text(d.get("mensagem"))
        if len(mensagem) > MAX_MENSAGEM:
            errors.append(f"Mensagem não pode exceder {MAX_MENSAGEM} caracteres")

        quarto_id = _number(d.get("quarto_id"))
        if not quarto_id or quarto_id <= 0:
            errors.append("ID do quarto inválido")

        return ValidationResult(errors)


# =========================================================================
# COMODIDADE / PROPRIEDADE
# =========================================================================

class ComodidadeValidator:
    def validate(self, data) -> ValidationResult:
        d = _as_dict(data)
        errors: List[str] = []

        nome = _text(d.get("nome")).strip()
        if not nome:
            errors.append("O nome é obrigatório")
        elif len(nome) > 30:
            errors.append("O nome não pode ter mais de 30 caracteres")

        descricao = _text(d.get("descricao")).strip()
        if not descricao:
            errors.append("A descrição é obrigatória")
        elif len(descricao) > 60:
            errors.append("A descrição não pode ter mais de 60 caracteres")

        return ValidationResult(errors)


class PropriedadeValidator:
    def validate(self, data) -> ValidationResult:
        d = _as_dict(data)
        errors: List[str] = []

        if not all(_text(d.get(campo)).strip() for campo in ("nome", "descricao", "morada")):
            errors.append("Por favor, preencha todos os campos obrigatórios.")

        link = d.get("link_externo_url")
        if link and not is_valid_url(link):
            errors.append("Link externo inválido")

        return ValidationResult(errors)

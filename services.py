# services.py
"""
Regras de negócio por cima dos repositórios:
validação antes de gravar, whitelist de estados das reservas (com
notificação ao hóspede), disponibilidade dos quartos e a reconciliação
das imagens quando um quarto é editado.
"""
import logging
import os
import smtplib
from dataclasses import dataclass
from datetime import date
from email.mime.text import MIMEText
from typing import Callable, Dict, List, Optional

from supabase import Client

from database import (
    ComodidadeRepository, PropriedadeRepository, QuartoRepository,
    RepositoryError, ReservaRepository,
)
from media import ImageUploadError, ImageUploadService
from models import (
    Comodidade, CreateQuartoData, CreateReservaData, ImagemInput, Notificacao,
    PROPRIEDADE_CAMPOS_OPCIONAIS, PROPRIEDADE_CAMPOS_TEXTO, Propriedade,
    PropriedadeWithAmenities, Quarto, QuartoWithImages, Reserva, ReservaStatus,
)
from validators import (
    ComodidadeValidator, PropriedadeValidator, QuartoValidator,
    ReservaValidator, ValidationResult, sanitize_input,
)

logger = logging.getLogger(__name__)


# =========================================================================
# ERROS
# =========================================================================

class ServiceError(Exception):
    pass


class ValidationFailed(ServiceError):
    def __init__(self, errors):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__(", ".join(self.errors))


class NotFound(ServiceError):
    pass


class OperationNotAllowed(ServiceError):
    pass


def _as_dict(data) -> dict:
    if hasattr(data, "model_dump"):
        return data.model_dump(exclude_unset=True)
    return dict(data or {})


# =========================================================================
# BASE
# =========================================================================

class BaseService:
    def __init__(self, repository):
        self.repository = repository

    def get_by_id(self, id: int):
        return self._call("get_by_id", self.repository.find_by_id, id)

    def get_all(self) -> list:
        return self._call("get_all", self.repository.find_all)

    def create(self, data):
        self._check("create", self.validate_create(data))
        return self._call("create", self.repository.create, data)

    def update(self, id: int, data):
        self._check("update", self.validate_update(id, data))
        return self._call("update", self.repository.update, id, data)

    def delete(self, id: int) -> None:
        self._check("delete", self.can_delete(id))
        self._call("delete", self.repository.delete, id)

    # --- pontos de extensão ---

    def validate_create(self, data) -> ValidationResult:
        return ValidationResult()

    def validate_update(self, id: int, data) -> ValidationResult:
        return ValidationResult()

    def can_delete(self, id: int) -> ValidationResult:
        return ValidationResult()

    def _check(self, operation: str, result: ValidationResult) -> None:
        if not result.is_valid:
            logger.info("%s.%s recusado: %s", type(self).__name__, operation, result.errors)
            raise ValidationFailed(result.errors)

    def _call(self, operation: str, fn, *args):
        try:
            return fn(*args)
        except RepositoryError as e:
            logger.error("Erro em %s.%s: %s", type(self).__name__, operation, e)
            raise


# =========================================================================
# QUARTOS
# =========================================================================

@dataclass
class NovaImagem:
    content: bytes
    content_type: Optional[str]
    filename: str = ""


def reconcile_images(existing: List[ImagemInput], uploaded: List[ImagemInput]) -> List[ImagemInput]:
    """
    Junta as imagens mantidas e as novas, ordena pela ordem original
    (estável: em empate, as mantidas ficam antes) e renumera 0..n-1.
    """
    final = sorted(list(existing) + list(uploaded), key=lambda img: img.ordem)
    return [ImagemInput(url=img.url, ordem=index) for index, img in enumerate(final)]


class QuartoService(BaseService):
    repository: QuartoRepository

    def __init__(
        self,
        repository: QuartoRepository,
        validator: Optional[QuartoValidator] = None,
        uploader: Optional[ImageUploadService] = None,
        reserva_repository: Optional[ReservaRepository] = None,
        today: Callable[[], date] = date.today,
    ):
        super().__init__(repository)
        self.validator = validator or QuartoValidator()
        self.uploader = uploader or ImageUploadService()
        self.reserva_repository = reserva_repository
        self._today = today

    def get_available_rooms(self) -> List[Quarto]:
        return self.repository.find_by_availability(True)

    def get_room_with_images(self, id: int) -> Optional[QuartoWithImages]:
        return self.repository.find_with_images(id)

    def get_rooms_with_cover(self):
        return self.repository.find_all_with_cover()

    def toggle_availability(self, id: int) -> Quarto:
        quarto = self.repository.find_by_id(id)
        if quarto is None:
            raise NotFound("Quarto não encontrado")
        return self.repository.update(id, {"disponivel": not quarto.disponivel})

    def dashboard_stats(self) -> Dict[str, int]:
        quartos = self.repository.find_all()
        return {
            "total_quartos": len(quartos),
            "quartos_disponiveis": len([q for q in quartos if q.disponivel]),
        }

    def save_room(
        self,
        data: CreateQuartoData,
        existing_images: List[ImagemInput],
        new_files: List[NovaImagem],
        quarto_id: Optional[int] = None,
    ) -> Quarto:
        data = data.model_copy(update={"imagens": list(existing_images)})
        self._check("save_room", self.validator.validate(data))

        if quarto_id is None:
            quarto = self.repository.create(data)
            logger.info("Novo quarto criado com ID: %s", quarto.id)
        else:
            if self.repository.find_by_id(quarto_id) is None:
                raise NotFound("Quarto não encontrado")
            quarto = self.repository.update(quarto_id, data)
            logger.info("Quarto %s atualizado", quarto_id)

        uploaded: List[ImagemInput] = []
        for i, file in enumerate(new_files):
            ordem_temporaria = len(existing_images) + i
            try:
                url = self.uploader.upload_room_image(
                    file.content, file.content_type, quarto.id, ordem_temporaria
                )
            except ImageUploadError as e:
                logger.error("Erro ao fazer upload da imagem %s (%s): %s", i + 1, file.filename, e)
                raise ServiceError(f"Erro no upload da imagem {i + 1}: {e}") from e
            uploaded.append(ImagemInput(url=url, ordem=ordem_temporaria))

        imagens = reconcile_images(existing_images, uploaded)
        self.repository.replace_images(quarto.id, imagens)
        logger.info(
            "Imagens do quarto %s: %s mantidas, %s novas, %s no total",
            quarto.id, len(existing_images), len(uploaded), len(imagens),
        )
        return quarto

    def delete(self, id: int) -> None:
        self._check("delete", self.can_delete(id))
        self.repository.delete_images(id)
        self.repository.delete(id)

    def validate_create(self, data) -> ValidationResult:
        return self.validator.validate(data)

    def validate_update(self, id: int, data) -> ValidationResult:
        d = _as_dict(data)
        errors = []
        if self.repository.find_by_id(id) is None:
            errors.append("Quarto não encontrado")
        if d.get("preco_noite") is not None and d["preco_noite"] <= 0:
            errors.append("Preço por noite deve ser maior que zero")
        if d.get("capacidade") is not None and d["capacidade"] <= 0:
            errors.append("Capacidade deve ser maior que zero")
        return ValidationResult(errors)

    def can_delete(self, id: int) -> ValidationResult:
        if self.reserva_repository is None:
            return ValidationResult()

        reservas = self.reserva_repository.find_by_quarto(id)
        if not reservas:
            return ValidationResult()

        hoje = self._today()
        if any(r.data_checkout > hoje for r in reservas):
            return ValidationResult([
                "Este quarto possui reservas futuras e não pode ser excluído. "
                "Por favor, cancele ou transfira as reservas antes de excluir o quarto."
            ])
        return ValidationResult([
            "Este quarto possui reservas passadas associadas e não pode ser "
            "excluído para manter o histórico."
        ])


# =========================================================================
# RESERVAS
# =========================================================================

STATUS_MESSAGES = {
    ReservaStatus.CONFIRMADA: "Sua reserva foi confirmada!",
    ReservaStatus.CANCELADA: "Sua reserva foi cancelada.",
    ReservaStatus.CONCLUIDA: "Obrigado por sua estadia!",
}


class ReservaService(BaseService):
    repository: ReservaRepository

    def __init__(
        self,
        repository: ReservaRepository,
        validator: Optional[ReservaValidator] = None,
        notification_service: Optional["NotificationService"] = None,
    ):
        super().__init__(repository)
        self.validator = validator or ReservaValidator()
        self.notification_service = notification_service or NotificationService()

    def get_by_status(self, estado: str) -> List[Reserva]:
        return self.repository.find_by_status(estado)

    def get_recent(self, limit: int = 5) -> List[Reserva]:
        return self.repository.find_recent(limit)

    def count_pending(self) -> int:
        return self.repository.count_by_status(ReservaStatus.PENDENTE)

    def validate_reservation(self, data: CreateReservaData) -> ValidationResult:
        return self.validator.validate(data)

    def create(self, data: CreateReservaData, quarto: Optional[Quarto] = None) -> None:
        """
        Grava o pedido como pendente. Não devolve a linha: no site o
        cliente é anónimo e as políticas RLS só o deixam inserir.
        """
        result = self.validate_create(data)
        if quarto is not None:
            if not quarto.disponivel:
                result.errors.append("Este quarto não está disponível para reservas")
            elif quarto.capacidade and (data.num_hospedes or 0) > quarto.capacidade:
                result.errors.append(f"Este quarto aceita no máximo {quarto.capacidade} hóspedes")
        self._check("create", result)
        row = data.model_dump()
        row.update(
            nome_hospede=sanitize_input(data.nome_hospede),
            email_hospede=data.email_hospede.strip(),
            telefone_hospede=sanitize_input(data.telefone_hospede),
            mensagem=sanitize_input(data.mensagem) or None,
            estado=ReservaStatus.PENDENTE,
        )
        self._call("create", self.repository.insert, row)
        logger.info("Nova reserva para o quarto %s (check-in %s)", data.quarto_id, data.data_checkin)

    def update_status(self, id: int, status: str) -> Reserva:
        try:
            novo = ReservaStatus(status)
        except ValueError:
            raise ValidationFailed("Status inválido") from None

        self._check("update_status", self.validate_update(id, {"estado": novo}))
        reserva = self._call("update_status", self.repository.update, id, {"estado": novo})
        self._send_status_notification(reserva, novo)
        return reserva

    def validate_create(self, data) -> ValidationResult:
        return self.validator.validate(data)

    def validate_update(self, id: int, data) -> ValidationResult:
        if self.repository.find_by_id(id) is None:
            return ValidationResult(["Reserva não encontrada"])
        return ValidationResult()

    def can_delete(self, id: int) -> ValidationResult:
        reserva = self.repository.find_by_id(id)
        if reserva is None:
            return ValidationResult(["Reserva não encontrada"])
        if reserva.estado in (ReservaStatus.CONFIRMADA, ReservaStatus.CONCLUIDA):
            return ValidationResult(["Não é possível deletar reservas confirmadas ou concluídas"])
        return ValidationResult()

    def _send_status_notification(self, reserva: Reserva, status: ReservaStatus) -> None:
        mensagem = STATUS_MESSAGES.get(status)
        if not mensagem:
            return
        try:
            self.notification_service.send(Notificacao(
                tipo="email",
                destinatario=reserva.email_hospede,
                assunto=f"Atualização da Reserva - {status.value}",
                mensagem=mensagem,
                dados={"reserva": reserva.model_dump(mode="json")},
            ))
        except Exception:
            # a reserva já foi atualizada; falha no envio só fica no log
            logger.exception("Falha ao enviar notificação da reserva %s", reserva.id)


# =========================================================================
# PROPRIEDADE / COMODIDADES
# =========================================================================

class PropriedadeService(BaseService):
    repository: PropriedadeRepository

    def __init__(self, repository: PropriedadeRepository, validator: Optional[PropriedadeValidator] = None):
        super().__init__(repository)
        self.validator = validator or PropriedadeValidator()

    def get_current(self) -> Optional[Propriedade]:
        return self.repository.get_current()

    def get_with_amenities(self, id: Optional[int] = None) -> Optional[PropriedadeWithAmenities]:
        if id is None:
            propriedade = self.repository.get_current()
            if propriedade is None:
                return None
            id = propriedade.id
        return self.repository.find_with_amenities(id)

    def selected_amenity_ids(self, id: int) -> List[int]:
        return self.repository.amenity_ids(id)

    def update(self, id: int, data) -> Propriedade:
        d = _as_dict(data)
        for campo in PROPRIEDADE_CAMPOS_OPCIONAIS:
            if campo in d:
                d[campo] = (d[campo] or "").strip() or None
        for campo in PROPRIEDADE_CAMPOS_TEXTO:
            if campo in d:
                d[campo] = (d[campo] or "").strip()
        return super().update(id, d)

    def validate_update(self, id: int, data) -> ValidationResult:
        return self.validator.validate(data)

    def set_hero_image(self, id: int, url: Optional[str]) -> Propriedade:
        return self.repository.update(id, {"hero_image_url": url or None})

    def toggle_amenity(self, id: int, comodidade_id: int) -> bool:
        """Liga/desliga a comodidade na propriedade; devolve se ficou selecionada."""
        if comodidade_id in self.repository.amenity_ids(id):
            self.repository.remove_amenity(id, comodidade_id)
            return False
        self.repository.add_amenity(id, comodidade_id)
        return True

    def update_amenities(self, id: int, amenity_ids: List[int]) -> None:
        self.repository.update_amenities(id, amenity_ids)


CORE_AMENITIES = (
    "Ar condicionado",
    "Estacionamento gratuito",
    "Pequeno-almoço incluído",
    "Receção multilíngue",
    "TV por cabo",
    "Wi-Fi gratuito",
)


def is_amenity_deletable(nome: str) -> bool:
    return nome not in CORE_AMENITIES


class ComodidadeService(BaseService):
    repository: ComodidadeRepository

    def __init__(
        self,
        repository: ComodidadeRepository,
        propriedade_repository: Optional[PropriedadeRepository] = None,
        validator: Optional[ComodidadeValidator] = None,
    ):
        super().__init__(repository)
        self.propriedade_repository = propriedade_repository
        self.validator = validator or ComodidadeValidator()

    def list_all(self) -> List[Comodidade]:
        return self.repository.find_all()

    def create(self, data, propriedade_id: Optional[int] = None) -> Comodidade:
        d = _as_dict(data)
        self._check("create", self.validate_create(d))
        row = {
            "nome": d["nome"].strip(),
            "descricao": d["descricao"].strip(),
            "icone": (d.get("icone") or "CheckCircle").strip(),
        }
        comodidade = self.repository.create(row)
        # nova comodidade já fica selecionada na propriedade
        if propriedade_id is not None and self.propriedade_repository is not None:
            self.propriedade_repository.add_amenity(propriedade_id, comodidade.id)
        return comodidade

    def validate_create(self, data) -> ValidationResult:
        return self.validator.validate(data)

    def delete(self, id: int) -> None:
        comodidade = self.repository.find_by_id(id)
        if comodidade is None:
            raise NotFound("Comodidade não encontrada")
        if not is_amenity_deletable(comodidade.nome):
            raise OperationNotAllowed("Esta comodidade não pode ser excluída")
        self.repository.delete(id)


# =========================================================================
# NOTIFICAÇÕES
# =========================================================================

class NotificationHandler:
    def send(self, notificacao: Notificacao) -> None:
        raise NotImplementedError


class EmailNotificationHandler(NotificationHandler):
    """SMTP quando SMTP_HOST está configurado; senão só fica no log."""

    def send(self, notificacao: Notificacao) -> None:
        host = os.getenv("SMTP_HOST")
        if not host:
            logger.info(
                "[Email] To: %s | Subject: %s | %s",
                notificacao.destinatario, notificacao.assunto, notificacao.mensagem,
            )
            return

        port = int(os.getenv("SMTP_PORT", "587"))
        user = os.getenv("SMTP_USER")
        password = os.getenv("SMTP_PASS")
        sender = os.getenv("SMTP_SENDER", user or "no-reply@example.com")

        msg = MIMEText(notificacao.mensagem, "plain", "utf-8")
        msg["Subject"] = notificacao.assunto or ""
        msg["From"] = sender
        msg["To"] = notificacao.destinatario

        with smtplib.SMTP(host, port, timeout=10) as server:
            server.starttls()
            if user and password:
                server.login(user, password)
            server.send_message(msg)


class SMSNotificationHandler(NotificationHandler):
    def send(self, notificacao: Notificacao) -> None:
        logger.info("[SMS] To: %s | %s", notificacao.destinatario, notificacao.mensagem)


class PushNotificationHandler(NotificationHandler):
    def send(self, notificacao: Notificacao) -> None:
        logger.info("[Push] To: %s | %s", notificacao.destinatario, notificacao.mensagem)


class NotificationService:
    def __init__(self):
        self.handlers: Dict[str, NotificationHandler] = {}
        self.register_handler("email", EmailNotificationHandler())
        self.register_handler("sms", SMSNotificationHandler())
        self.register_handler("push", PushNotificationHandler())

    def register_handler(self, tipo: str, handler: NotificationHandler) -> None:
        self.handlers[tipo] = handler

    def send(self, notificacao: Notificacao) -> None:
        handler = self.handlers.get(notificacao.tipo)
        if handler is None:
            raise ServiceError(f"Notification handler not found for type: {notificacao.tipo}")
        try:
            handler.send(notificacao)
        except Exception:
            logger.error("Failed to send %s notification to %s", notificacao.tipo, notificacao.destinatario)
            raise


# =========================================================================
# FACTORY
# =========================================================================

class ServiceFactory:
    """Cria (uma vez) os serviços ligados a um cliente Supabase."""

    def __init__(self, client: Client):
        self.client = client
        self.services: Dict[str, object] = {}

    def _get(self, name: str, build: Callable[[], object]):
        if name not in self.services:
            self.services[name] = build()
        return self.services[name]

    def get_quarto_service(self) -> QuartoService:
        return self._get("quarto_service", lambda: QuartoService(
            QuartoRepository(self.client),
            QuartoValidator(),
            self.get_image_upload_service(),
            ReservaRepository(self.client),
        ))

    def get_reserva_service(self) -> ReservaService:
        return self._get("reserva_service", lambda: ReservaService(
            ReservaRepository(self.client),
            ReservaValidator(),
            self.get_notification_service(),
        ))

    def get_propriedade_service(self) -> PropriedadeService:
        return self._get("propriedade_service", lambda: PropriedadeService(
            PropriedadeRepository(self.client),
        ))

    def get_comodidade_service(self) -> ComodidadeService:
        return self._get("comodidade_service", lambda: ComodidadeService(
            ComodidadeRepository(self.client),
            PropriedadeRepository(self.client),
        ))

    def get_notification_service(self) -> NotificationService:
        return self._get("notification_service", NotificationService)

    def get_image_upload_service(self) -> ImageUploadService:
        return self._get("image_upload_service", ImageUploadService)

    def register_service(self, name: str, service: object) -> None:
        self.services[name] = service

    def get_service(self, name: str):
        return self.services.get(name)

from datetime import date
from unittest.mock import MagicMock

import pytest

from database import RepositoryError
from media import ImageUploadError
from models import (
    Comodidade, ImagemInput, Notificacao, Propriedade, Quarto, ReservaStatus,
)
from services import (
    ComodidadeService, NotFound, NotificationHandler, NotificationService,
    NovaImagem, OperationNotAllowed, PropriedadeService, QuartoService,
    ReservaService, ServiceError, ServiceFactory, ValidationFailed,
    is_amenity_deletable, reconcile_images,
)
from validators import ReservaValidator

from conftest import HOJE, make_reserva


def make_quarto(**overrides) -> Quarto:
    dados = dict(
        id=1, nome="Quarto Duplo", descricao="Quarto com vista mar",
        preco_noite=80, capacidade=2, tamanho_m2=18, disponivel=True,
    )
    dados.update(overrides)
    return Quarto(**dados)


# =========================================================================
# RESERVAS
# =========================================================================

@pytest.fixture
def reserva_repo():
    return MagicMock()


@pytest.fixture
def notificacoes():
    return MagicMock(spec=NotificationService)


@pytest.fixture
def reserva_service(reserva_repo, notificacoes):
    return ReservaService(reserva_repo, ReservaValidator(today=lambda: HOJE), notificacoes)


def test_update_status_rejeita_estado_fora_da_lista(reserva_service, reserva_repo):
    with pytest.raises(ValidationFailed, match="Status inválido"):
        reserva_service.update_status(1, "aprovada")
    reserva_repo.update.assert_not_called()


@pytest.mark.parametrize("estado, mensagem", [
    ("confirmada", "Sua reserva foi confirmada!"),
    ("cancelada", "Sua reserva foi cancelada."),
    ("concluida", "Obrigado por sua estadia!"),
])
def test_update_status_notifica_o_hospede(reserva_service, reserva_repo, notificacoes, estado, mensagem):
    reserva_repo.update.return_value = make_reserva(estado=estado)

    reserva = reserva_service.update_status(1, estado)

    assert reserva.estado == ReservaStatus(estado)
    reserva_repo.update.assert_called_once_with(1, {"estado": ReservaStatus(estado)})
    notificacao = notificacoes.send.call_args.args[0]
    assert notificacao.tipo == "email"
    assert notificacao.destinatario == "maria@example.com"
    assert notificacao.assunto == f"Atualização da Reserva - {estado}"
    assert notificacao.mensagem == mensagem


def test_update_status_pendente_nao_notifica(reserva_service, reserva_repo, notificacoes):
    reserva_repo.update.return_value = make_reserva()
    reserva_service.update_status(1, "pendente")
    notificacoes.send.assert_not_called()


def test_falha_na_notificacao_nao_desfaz_a_atualizacao(reserva_service, reserva_repo, notificacoes):
    reserva_repo.update.return_value = make_reserva(estado="confirmada")
    notificacoes.send.side_effect = RuntimeError("smtp em baixo")

    reserva = reserva_service.update_status(1, "confirmada")

    assert reserva.estado == ReservaStatus.CONFIRMADA


def test_create_reserva_comeca_pendente_e_limpa_texto(reserva_service, reserva_repo, reserva_valida):
    dados = reserva_valida.model_copy(update={"nome_hospede": " <João> ", "mensagem": "  "})

    assert reserva_service.create(dados) is None

    reserva_repo.create.assert_not_called()
    row = reserva_repo.insert.call_args.args[0]
    assert row["estado"] == ReservaStatus.PENDENTE
    assert row["nome_hospede"] == "João"
    assert row["mensagem"] is None


def test_create_reserva_invalida(reserva_service, reserva_repo, reserva_valida):
    dados = reserva_valida.model_copy(update={"email_hospede": "x"})
    with pytest.raises(ValidationFailed) as exc:
        reserva_service.create(dados)
    assert exc.value.errors == ["Email inválido"]
    reserva_repo.insert.assert_not_called()


def test_create_reserva_acima_da_capacidade_do_quarto(reserva_service, reserva_valida):
    dados = reserva_valida.model_copy(update={"num_hospedes": 3})
    with pytest.raises(ValidationFailed, match="Este quarto aceita no máximo 2 hóspedes"):
        reserva_service.create(dados, quarto=make_quarto(capacidade=2))


def test_create_reserva_em_quarto_indisponivel(reserva_service, reserva_repo, reserva_valida):
    with pytest.raises(ValidationFailed) as exc:
        reserva_service.create(reserva_valida, quarto=make_quarto(disponivel=False))
    assert exc.value.errors == ["Este quarto não está disponível para reservas"]
    reserva_repo.insert.assert_not_called()


def test_validate_reservation(reserva_service, reserva_valida):
    assert reserva_service.validate_reservation(reserva_valida).is_valid
    dados = reserva_valida.model_copy(update={"telefone_hospede": " "})
    assert reserva_service.validate_reservation(dados).errors == ["Telefone é obrigatório"]


def test_update_status_reserva_inexistente(reserva_service, reserva_repo, notificacoes):
    reserva_repo.find_by_id.return_value = None
    with pytest.raises(ValidationFailed, match="Reserva não encontrada"):
        reserva_service.update_status(999, "confirmada")
    reserva_repo.update.assert_not_called()
    notificacoes.send.assert_not_called()


def test_erro_do_repositorio_fica_no_log_e_sobe(reserva_service, reserva_repo, caplog):
    reserva_repo.find_all.side_effect = RepositoryError("ReservaRepository.find_all")
    with caplog.at_level("ERROR", logger="services"):
        with pytest.raises(RepositoryError):
            reserva_service.get_all()
    assert "ReservaService.get_all" in caplog.text


def test_validation_failed_junta_mensagens():
    assert str(ValidationFailed(["a", "b"])) == "a, b"


def test_delete_reserva_confirmada(reserva_service, reserva_repo):
    reserva_repo.find_by_id.return_value = make_reserva(estado="confirmada")
    with pytest.raises(ValidationFailed, match="Não é possível deletar reservas confirmadas ou concluídas"):
        reserva_service.delete(1)
    reserva_repo.delete.assert_not_called()


def test_delete_reserva_pendente(reserva_service, reserva_repo):
    reserva_repo.find_by_id.return_value = make_reserva()
    reserva_service.delete(1)
    reserva_repo.delete.assert_called_once_with(1)


def test_delete_reserva_inexistente(reserva_service, reserva_repo):
    reserva_repo.find_by_id.return_value = None
    with pytest.raises(ValidationFailed, match="Reserva não encontrada"):
        reserva_service.delete(9)


def test_count_pending(reserva_service, reserva_repo):
    reserva_repo.count_by_status.return_value = 4
    assert reserva_service.count_pending() == 4
    reserva_repo.count_by_status.assert_called_once_with(ReservaStatus.PENDENTE)


# =========================================================================
# QUARTOS
# =========================================================================

@pytest.fixture
def quarto_repo():
    repo = MagicMock()
    repo.create.return_value = make_quarto(id=7)
    repo.update.return_value = make_quarto(id=7)
    repo.find_by_id.return_value = make_quarto(id=7)
    return repo


@pytest.fixture
def uploader():
    up = MagicMock()
    up.upload_room_image.side_effect = lambda content, ct, qid, ordem: f"https://cdn/{qid}/{ordem}.jpg"
    return up


@pytest.fixture
def quarto_service(quarto_repo, uploader):
    return QuartoService(quarto_repo, uploader=uploader, reserva_repository=MagicMock(), today=lambda: HOJE)


def test_toggle_availability(quarto_service, quarto_repo):
    quarto_repo.find_by_id.return_value = make_quarto(disponivel=True)
    quarto_service.toggle_availability(1)
    quarto_repo.update.assert_called_once_with(1, {"disponivel": False})


def test_toggle_availability_quarto_inexistente(quarto_service, quarto_repo):
    quarto_repo.find_by_id.return_value = None
    with pytest.raises(NotFound, match="Quarto não encontrado"):
        quarto_service.toggle_availability(1)


def test_get_available_rooms(quarto_service, quarto_repo):
    quarto_service.get_available_rooms()
    quarto_repo.find_by_availability.assert_called_once_with(True)


def test_reconcile_images_renumera_e_mantem_ordem():
    existentes = [ImagemInput(url="c", ordem=5), ImagemInput(url="a", ordem=1)]
    novas = [ImagemInput(url="b", ordem=1), ImagemInput(url="d", ordem=7)]

    final = reconcile_images(existentes, novas)

    assert [(i.url, i.ordem) for i in final] == [("a", 0), ("b", 1), ("c", 2), ("d", 3)]


def test_save_room_novo_quarto_com_imagens(quarto_service, quarto_repo, uploader, quarto_valido):
    existentes = list(quarto_valido.imagens)
    novos = [NovaImagem(b"1", "image/jpeg", "a.jpg"), NovaImagem(b"2", "image/jpeg", "b.jpg")]

    quarto = quarto_service.save_room(quarto_valido, existentes, novos)

    assert quarto.id == 7
    quarto_repo.create.assert_called_once()
    assert [c.args[3] for c in uploader.upload_room_image.call_args_list] == [1, 2]
    quarto_repo.replace_images.assert_called_once()
    quarto_id, imagens = quarto_repo.replace_images.call_args.args
    assert quarto_id == 7
    assert [(i.url, i.ordem) for i in imagens] == [
        (existentes[0].url, 0),
        ("https://cdn/7/1.jpg", 1),
        ("https://cdn/7/2.jpg", 2),
    ]


def test_save_room_edita_quarto(quarto_service, quarto_repo, quarto_valido):
    quarto_service.save_room(quarto_valido, [], [], quarto_id=7)
    quarto_repo.update.assert_called_once()
    quarto_repo.create.assert_not_called()
    quarto_repo.replace_images.assert_called_once_with(7, [])


def test_save_room_edita_quarto_inexistente(quarto_service, quarto_repo, quarto_valido):
    quarto_repo.find_by_id.return_value = None
    with pytest.raises(NotFound):
        quarto_service.save_room(quarto_valido, [], [], quarto_id=99)


def test_save_room_invalido_nao_grava(quarto_service, quarto_repo, quarto_valido):
    dados = quarto_valido.model_copy(update={"nome": "ab"})
    with pytest.raises(ValidationFailed):
        quarto_service.save_room(dados, [], [])
    quarto_repo.create.assert_not_called()


def test_save_room_falha_no_upload(quarto_service, uploader, quarto_valido):
    uploader.upload_room_image.side_effect = ImageUploadError("Resolução muito baixa")
    with pytest.raises(ServiceError, match="Erro no upload da imagem 1: Resolução muito baixa"):
        quarto_service.save_room(quarto_valido, [], [NovaImagem(b"x", "image/jpeg")])


def test_delete_quarto_com_reservas_futuras(quarto_service):
    quarto_service.reserva_repository.find_by_quarto.return_value = [
        make_reserva(data_checkin=HOJE, data_checkout=date(2025, 6, 20)),
    ]
    with pytest.raises(ValidationFailed, match="reservas futuras"):
        quarto_service.delete(1)


def test_delete_quarto_com_reservas_passadas(quarto_service, quarto_repo):
    quarto_service.reserva_repository.find_by_quarto.return_value = [
        make_reserva(data_checkin=date(2025, 1, 1), data_checkout=date(2025, 1, 3)),
    ]
    with pytest.raises(ValidationFailed, match="reservas passadas"):
        quarto_service.delete(1)
    quarto_repo.delete.assert_not_called()


def test_delete_quarto_sem_reservas(quarto_service, quarto_repo):
    quarto_service.reserva_repository.find_by_quarto.return_value = []
    quarto_service.delete(1)
    quarto_repo.delete_images.assert_called_once_with(1)
    quarto_repo.delete.assert_called_once_with(1)


def test_validate_update(quarto_service, quarto_repo):
    quarto_repo.find_by_id.return_value = None
    result = quarto_service.validate_update(1, {"preco_noite": 0, "capacidade": -1})
    assert result.errors == [
        "Quarto não encontrado",
        "Preço por noite deve ser maior que zero",
        "Capacidade deve ser maior que zero",
    ]


def test_dashboard_stats(quarto_service, quarto_repo):
    quarto_repo.find_all.return_value = [make_quarto(id=1), make_quarto(id=2, disponivel=False)]
    assert quarto_service.dashboard_stats() == {"total_quartos": 2, "quartos_disponiveis": 1}


# =========================================================================
# PROPRIEDADE / COMODIDADES
# =========================================================================

def make_propriedade(**overrides) -> Propriedade:
    dados = dict(id=1, nome="Casa do Mar", descricao="Alojamento junto à praia", morada="Rua 1")
    dados.update(overrides)
    return Propriedade(**dados)


def test_update_propriedade_limpa_opcionais_vazios():
    repo = MagicMock()
    repo.update.return_value = make_propriedade()
    service = PropriedadeService(repo)

    service.update(1, {
        "nome": "Casa do Mar", "descricao": "Junto à praia", "morada": "Rua 1",
        "telefone": " 912 ", "link_externo_url": "  ", "titulo_quartos": "",
    })

    dados = repo.update.call_args.args[1]
    assert dados["telefone"] == "912"
    assert dados["link_externo_url"] is None
    assert dados["titulo_quartos"] is None


def test_update_propriedade_invalida():
    repo = MagicMock()
    service = PropriedadeService(repo)
    with pytest.raises(ValidationFailed, match="Por favor, preencha todos os campos obrigatórios."):
        service.update(1, {"nome": "", "descricao": "x", "morada": "y"})
    repo.update.assert_not_called()


def test_toggle_amenity():
    repo = MagicMock()
    repo.amenity_ids.return_value = [3]
    service = PropriedadeService(repo)

    assert service.toggle_amenity(1, 3) is False
    repo.remove_amenity.assert_called_once_with(1, 3)

    assert service.toggle_amenity(1, 4) is True
    repo.add_amenity.assert_called_once_with(1, 4)


def test_get_with_amenities_sem_propriedade():
    repo = MagicMock()
    repo.get_current.return_value = None
    assert PropriedadeService(repo).get_with_amenities() is None


def test_comodidade_create_liga_a_propriedade():
    repo, prop_repo = MagicMock(), MagicMock()
    repo.create.return_value = Comodidade(id=9, nome="Piscina", descricao="Exterior")
    service = ComodidadeService(repo, prop_repo)

    service.create({"nome": " Piscina ", "descricao": " Exterior ", "icone": ""}, propriedade_id=1)

    repo.create.assert_called_once_with({"nome": "Piscina", "descricao": "Exterior", "icone": "CheckCircle"})
    prop_repo.add_amenity.assert_called_once_with(1, 9)


def test_comodidade_base_nao_pode_ser_excluida():
    repo = MagicMock()
    repo.find_by_id.return_value = Comodidade(id=1, nome="Wi-Fi gratuito", descricao="Em todo o lado")
    with pytest.raises(OperationNotAllowed):
        ComodidadeService(repo).delete(1)
    repo.delete.assert_not_called()
    assert not is_amenity_deletable("Wi-Fi gratuito")
    assert is_amenity_deletable("Piscina")


def test_comodidade_inexistente():
    repo = MagicMock()
    repo.find_by_id.return_value = None
    with pytest.raises(NotFound, match="Comodidade não encontrada"):
        ComodidadeService(repo).delete(1)


# =========================================================================
# NOTIFICAÇÕES / FACTORY
# =========================================================================

class Guardar(NotificationHandler):
    def __init__(self):
        self.enviadas = []

    def send(self, notificacao):
        self.enviadas.append(notificacao)


def test_notification_service_usa_handler_registado():
    service = NotificationService()
    handler = Guardar()
    service.register_handler("email", handler)

    service.send(Notificacao(tipo="email", destinatario="a@b.pt", mensagem="olá"))

    assert [n.destinatario for n in handler.enviadas] == ["a@b.pt"]


def test_notification_service_tipo_desconhecido():
    with pytest.raises(ServiceError, match="Notification handler not found for type: fax"):
        NotificationService().send(Notificacao(tipo="fax", destinatario="x", mensagem="y"))


def test_email_sem_smtp_so_regista(monkeypatch, caplog):
    monkeypatch.delenv("SMTP_HOST", raising=False)
    with caplog.at_level("INFO", logger="services"):
        NotificationService().send(Notificacao(
            tipo="email", destinatario="a@b.pt", assunto="Teste", mensagem="olá",
        ))
    assert "a@b.pt" in caplog.text


def test_service_factory_reutiliza_servicos():
    factory = ServiceFactory(MagicMock())
    assert factory.get_quarto_service() is factory.get_quarto_service()
    assert factory.get_reserva_service().notification_service is factory.get_notification_service()

    outro = object()
    factory.register_service("extra", outro)
    assert factory.get_service("extra") is outro
    assert factory.get_service("nada") is None


def test_update_amenities():
    repo = MagicMock()
    PropriedadeService(repo).update_amenities(1, [2, 5])
    repo.update_amenities.assert_called_once_with(1, [2, 5])

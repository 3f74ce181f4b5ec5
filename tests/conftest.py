from datetime import date

import pytest

from models import CreateQuartoData, CreateReservaData, ImagemInput, Reserva, ReservaStatus

HOJE = date(2025, 6, 15)


@pytest.fixture
def hoje():
    return HOJE


@pytest.fixture
def reserva_valida():
    return CreateReservaData(
        quarto_id=1,
        nome_hospede="João Silva",
        email_hospede="joao@example.com",
        telefone_hospede="+351912345678",
        data_checkin=date(2025, 7, 1),
        data_checkout=date(2025, 7, 5),
        num_hospedes=2,
        mensagem="Chegamos tarde",
    )


@pytest.fixture
def quarto_valido():
    return CreateQuartoData(
        nome="Quarto Duplo",
        descricao="Quarto espaçoso com vista para o mar",
        preco_noite=85.0,
        capacidade=2,
        tamanho_m2=20.0,
        comodidades=["Wi-Fi", "TV"],
        disponivel=True,
        imagens=[ImagemInput(url="https://res.cloudinary.com/demo/image/upload/a.jpg", ordem=0)],
    )


def make_reserva(**overrides) -> Reserva:
    dados = dict(
        id=1,
        quarto_id=1,
        nome_hospede="Maria",
        email_hospede="maria@example.com",
        telefone_hospede="912345678",
        data_checkin=date(2025, 7, 1),
        data_checkout=date(2025, 7, 3),
        num_hospedes=2,
        estado=ReservaStatus.PENDENTE,
    )
    dados.update(overrides)
    return Reserva(**dados)

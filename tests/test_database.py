from datetime import date
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError
from postgrest.types import ReturnMethod

from database import (
    ComodidadeRepository, PropriedadeRepository, QuartoRepository,
    RepositoryError, ReservaRepository,
)
from models import ImagemInput, ReservaStatus


def response(data=None, count=None):
    r = MagicMock()
    r.data = data
    r.count = count
    return r


def fake_client(*responses):
    """
    Cliente Supabase falso: qualquer cadeia table().select().eq()...
    devolve o mesmo query builder, e execute() devolve as respostas
    pela ordem dada.
    """
    client = MagicMock()
    query = MagicMock()
    for metodo in ("select", "insert", "update", "delete", "eq", "in_", "gte", "lte", "order", "limit", "single"):
        getattr(query, metodo).return_value = query
    query.execute.side_effect = list(responses)
    client.table.return_value = query
    return client, query


QUARTO = {
    "id": 1, "nome": "Quarto Duplo", "descricao": "Vista mar", "preco_noite": 80,
    "capacidade": 2, "tamanho_m2": 18, "comodidades": ["Wi-Fi"], "disponivel": True,
}

RESERVA = {
    "id": 3, "quarto_id": 1, "nome_hospede": "Maria", "email_hospede": "m@x.pt",
    "telefone_hospede": "91", "data_checkin": "2025-07-01", "data_checkout": "2025-07-04",
    "num_hospedes": 2, "estado": "pendente", "created_at": "2025-06-01T10:00:00+00:00",
    "quarto": {"id": 1, "nome": "Quarto Duplo", "preco_noite": 80},
}


def test_find_by_id_sem_linhas_devolve_none():
    client, query = fake_client()
    query.execute.side_effect = APIError({"code": "PGRST116", "message": "no rows"})
    assert QuartoRepository(client).find_by_id(99) is None


def test_find_by_id_outro_erro_vira_repository_error():
    client, query = fake_client()
    query.execute.side_effect = APIError({"code": "42501", "message": "permission denied"})
    with pytest.raises(RepositoryError):
        QuartoRepository(client).find_by_id(1)


def test_find_by_id_mapeia_a_linha():
    client, query = fake_client(response(QUARTO))
    quarto = QuartoRepository(client).find_by_id(1)
    assert quarto.nome == "Quarto Duplo"
    client.table.assert_called_with("quartos")
    query.eq.assert_called_with("id", 1)


def test_reserva_vem_com_o_quarto():
    client, _ = fake_client(response([RESERVA]))
    [reserva] = ReservaRepository(client).find_all()
    assert reserva.estado == ReservaStatus.PENDENTE
    assert reserva.quarto.nome == "Quarto Duplo"
    assert reserva.noites == 3


def test_find_all_ordena_pela_coluna_do_repositorio():
    client, query = fake_client(response([]))
    ReservaRepository(client).find_all()
    query.order.assert_called_with("created_at", desc=True)


def test_update_envia_so_campos_dados():
    client, query = fake_client(response([QUARTO]))
    QuartoRepository(client).update(1, {"disponivel": False, "id": 5, "lixo": 1})
    query.update.assert_called_once_with({"disponivel": False})


def test_update_de_reserva_serializa_o_estado_e_rele_com_join():
    client, query = fake_client(response([RESERVA]), response(RESERVA))
    reserva = ReservaRepository(client).update(3, {"estado": ReservaStatus.CONFIRMADA})
    query.update.assert_called_once_with({"estado": "confirmada"})
    assert reserva.quarto is not None


def test_create_sem_dados_na_resposta():
    client, _ = fake_client(response([]))
    with pytest.raises(RepositoryError):
        QuartoRepository(client).create(QUARTO)


def test_count_by_status():
    client, query = fake_client(response(count=4))
    assert ReservaRepository(client).count_by_status(ReservaStatus.PENDENTE) == 4
    query.select.assert_called_with("id", count="exact")
    query.eq.assert_called_with("estado", "pendente")


def test_find_all_with_cover_fica_com_a_primeira_imagem():
    outro = dict(QUARTO, id=2)
    client, _ = fake_client(
        response([QUARTO, outro]),
        response([
            {"quarto_id": 1, "url": "a0", "ordem": 0},
            {"quarto_id": 1, "url": "a1", "ordem": 1},
        ]),
    )
    resultado = QuartoRepository(client).find_all_with_cover()
    assert [(q.id, capa) for q, capa in resultado] == [(1, "a0"), (2, None)]


def test_replace_images():
    client, query = fake_client(response([]), response([]))
    QuartoRepository(client).replace_images(1, [ImagemInput(url="u", ordem=0)])
    query.insert.assert_called_once_with([{"quarto_id": 1, "url": "u", "ordem": 0}])
    client.table.assert_called_with("imagens_quartos")


def test_get_current_propriedade():
    client, _ = fake_client(response([{"id": 1, "nome": "Casa"}]))
    assert PropriedadeRepository(client).get_current().nome == "Casa"


def test_find_with_amenities_ordena_por_nome():
    client, _ = fake_client(
        response({"id": 1, "nome": "Casa"}),
        response([
            {"comodidade": {"id": 2, "nome": "Wi-Fi gratuito", "descricao": "", "icone": "Wifi"}},
            {"comodidade": {"id": 1, "nome": "Ar condicionado", "descricao": "", "icone": "AirVent"}},
        ]),
    )
    propriedade = PropriedadeRepository(client).find_with_amenities(1)
    assert [c.nome for c in propriedade.comodidades] == ["Ar condicionado", "Wi-Fi gratuito"]


def test_update_amenities_substitui_o_conjunto():
    client, query = fake_client(response([]), response([]))
    PropriedadeRepository(client).update_amenities(1, [3, 3, 4])
    query.insert.assert_called_once_with([
        {"propriedade_id": 1, "comodidade_id": 3},
        {"propriedade_id": 1, "comodidade_id": 4},
    ])


def test_delete_comodidade_remove_ligacoes_primeiro():
    client, _ = fake_client(response([]), response([]))
    ComodidadeRepository(client).delete(5)
    tabelas = [c.args[0] for c in client.table.call_args_list]
    assert tabelas == ["propriedade_comodidades", "comodidades"]


def test_insert_de_reserva_nao_pede_a_linha_de_volta():
    client, query = fake_client(response(None))
    ReservaRepository(client).insert({
        "quarto_id": 1, "nome_hospede": "Maria", "estado": ReservaStatus.PENDENTE,
        "data_checkin": date(2025, 7, 1),
    })
    query.insert.assert_called_once_with(
        {"quarto_id": 1, "nome_hospede": "Maria", "estado": "pendente", "data_checkin": "2025-07-01"},
        returning=ReturnMethod.minimal,
    )
    query.select.assert_not_called()
    query.single.assert_not_called()


def test_find_by_date_range_usa_limites_inclusivos():
    client, query = fake_client(response([RESERVA]))
    reservas = ReservaRepository(client).find_by_date_range(date(2025, 7, 1), date(2025, 7, 31))
    assert [r.id for r in reservas] == [3]
    query.gte.assert_called_once_with("data_checkin", "2025-07-01")
    query.lte.assert_called_once_with("data_checkout", "2025-07-31")
    query.order.assert_called_with("data_checkin", desc=False)


def test_find_by_quarto_ordena_por_checkin():
    client, query = fake_client(response([RESERVA]))
    ReservaRepository(client).find_by_quarto(1)
    query.eq.assert_called_once_with("quarto_id", 1)
    query.order.assert_called_once_with("data_checkin", desc=False)


def test_find_recent():
    client, query = fake_client(response([RESERVA]))
    ReservaRepository(client).find_recent(5)
    query.order.assert_called_once_with("created_at", desc=True)
    query.limit.assert_called_once_with(5)


def test_find_by_availability():
    client, query = fake_client(response([QUARTO]))
    [quarto] = QuartoRepository(client).find_by_availability(True)
    assert quarto.disponivel
    query.eq.assert_called_once_with("disponivel", True)
    query.order.assert_called_once_with("id", desc=False)

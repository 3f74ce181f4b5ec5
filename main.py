# main.py
import logging
import os
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import (
    FastAPI, Request, Form, Depends,
    HTTPException, status, UploadFile, File
)
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from fastapi.staticfiles import StaticFiles
from jose import jwt, JWTError
from starlette.exceptions import HTTPException as StarletteHTTPException
from supabase import AuthError

from database import (
    SUPABASE_URL, RepositoryError, create_auth_client, get_supabase,
    get_user_client,
)
from media import ImageUploadError, optimized_image_url
from models import CreateQuartoData, CreateReservaData, ImagemInput, ReservaStatus
from propriedade_feed import ENABLE_REALTIME, PropriedadeFeed
from services import (
    NotFound, NovaImagem, OperationNotAllowed, ServiceError, ServiceFactory,
    ValidationFailed, is_amenity_deletable,
)

# =========================================================================
# 1. CONFIG (SEGURANÇA / ENV / LOGS)
# =========================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# JWT secret do projeto Supabase (Settings > API). Sem ele, o token é
# validado chamando o auth do Supabase.
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "")
ALGORITHM = "HS256"
AUDIENCE = "authenticated"

COOKIE_NAME = "access_token"
# Em HTTPS (prod) use SECURE_COOKIES=1; local via http deixa 0.
SECURE_COOKIES = os.getenv("SECURE_COOKIES", "0") == "1"

ESTADOS_RESERVA = [s.value for s in ReservaStatus]
ICONES_COMODIDADE = ["Wifi", "Coffee", "Tv", "AirVent", "CircleParking", "ConciergeBell", "CheckCircle"]

BASE_DIR = Path(__file__).resolve().parent

# =========================================================================
# 2. APP / TEMPLATES / STATIC
# =========================================================================

app = FastAPI(title="Alojamento Local")
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
templates.env.filters["otimizada"] = optimized_image_url
templates.env.filters["data_pt"] = lambda d: d.strftime("%d/%m/%Y") if d else ""

app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")

feed: Optional[PropriedadeFeed] = None


# =========================================================================
# 3. SERVIÇOS (PÚBLICO x ADMIN)
# =========================================================================

@lru_cache(maxsize=1)
def get_public_services() -> ServiceFactory:
    return ServiceFactory(get_supabase())


def get_propriedade_info(services: ServiceFactory = Depends(get_public_services)):
    if feed is not None:
        return feed.current()
    return services.get_propriedade_service().get_with_amenities()


# =========================================================================
# 4. AUTH (SUPABASE)
# =========================================================================

class AdminSession:
    def __init__(self, email: str, token: str):
        self.email = email
        self.token = token


def decode_access_token(token: str) -> Optional[str]:
    """Email (ou sub) do utilizador, ou None se o token não vale."""
    if SUPABASE_JWT_SECRET:
        try:
            payload = jwt.decode(token, SUPABASE_JWT_SECRET, algorithms=[ALGORITHM], audience=AUDIENCE)
        except JWTError:
            return None
        return payload.get("email") or payload.get("sub")

    try:
        response = create_auth_client().auth.get_user(token)
    except AuthError:
        return None
    if not response or not response.user:
        return None
    return response.user.email or response.user.id


def check_admin(request: Request) -> AdminSession:
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
            headers={"Location": "/admin/login"},
        )

    email = decode_access_token(token)
    if email is None:
        raise HTTPException(
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
            headers={"Location": "/admin/logout"},
        )

    return AdminSession(email, token)


def get_admin_services(admin: AdminSession = Depends(check_admin)) -> ServiceFactory:
    return ServiceFactory(get_user_client(admin.token))


# =========================================================================
# 5. STARTUP / SHUTDOWN (REALTIME DA PROPRIEDADE)
# =========================================================================

@app.on_event("startup")
async def on_startup():
    global feed
    if not ENABLE_REALTIME or not SUPABASE_URL:
        logger.info("Realtime desligado")
        return
    try:
        feed = PropriedadeFeed(get_public_services().get_propriedade_service())
        await feed.start()
    except Exception:
        # sem realtime as páginas leem direto do Supabase
        logger.exception("Falha ao iniciar o realtime da propriedade")
        feed = None


@app.on_event("shutdown")
async def on_shutdown():
    if feed is not None:
        await feed.stop()


# =========================================================================
# 6. HELPERS (FORMULÁRIOS)
# =========================================================================

def to_float(value: Optional[str]) -> float:
    try:
        return float((value or "").replace(",", "."))
    except ValueError:
        return 0


def to_int(value: Optional[str]) -> int:
    try:
        return int(value or "")
    except ValueError:
        return 0


def to_date(value: Optional[str]) -> Optional[date]:
    try:
        return date.fromisoformat(value) if value else None
    except ValueError:
        return None


def parse_comodidades(values: List[str]) -> List[str]:
    """Aceita checkboxes e/ou um campo de texto separado por vírgulas."""
    items: List[str] = []
    for value in values:
        items.extend(p.strip() for p in value.split(","))
    return list(dict.fromkeys(i for i in items if i))


def read_uploads(files: List[UploadFile]) -> List[NovaImagem]:
    return [
        NovaImagem(content=f.file.read(), content_type=f.content_type, filename=f.filename)
        for f in files
        if f and f.filename
    ]


def redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


def with_message(url: str, texto: str, tipo: str = "sucesso") -> RedirectResponse:
    sep = "&" if "?" in url else "?"
    return redirect(f"{url}{sep}{urlencode({'msg': texto, 'tipo': tipo})}")


def flash(request: Request) -> Optional[dict]:
    texto = request.query_params.get("msg")
    if not texto:
        return None
    return {"tipo": request.query_params.get("tipo", "sucesso"), "texto": texto}


# =========================================================================
# 7. ERROS
# =========================================================================

@app.exception_handler(StarletteHTTPException)
async def http_error_page(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return templates.TemplateResponse(
            request, "404.html", {"detail": exc.detail}, status_code=404
        )
    if exc.headers and "Location" in exc.headers:
        return RedirectResponse(exc.headers["Location"], status_code=exc.status_code)
    return HTMLResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RepositoryError)
async def repository_error_page(request: Request, exc: RepositoryError):
    logger.error("❌ ERRO no Supabase em %s: %r", exc.operation, exc.cause)
    return HTMLResponse("Erro ao comunicar com a base de dados. Verifique os logs.", status_code=502)


# =========================================================================
# 8. ROTAS PÚBLICAS
# =========================================================================

@app.get("/", response_class=HTMLResponse)
def home(
    request: Request,
    services: ServiceFactory = Depends(get_public_services),
    propriedade=Depends(get_propriedade_info),
):
    quartos = services.get_quarto_service().get_rooms_with_cover()
    return templates.TemplateResponse(request, "index.html", {
        "propriedade": propriedade,
        "quartos": quartos,
    })


def _render_quarto(request, quarto, propriedade, form=None, errors=None, enviado=False, status_code=200):
    return templates.TemplateResponse(request, "quarto.html", {
        "quarto": quarto,
        "propriedade": propriedade,
        "form": form or {},
        "errors": errors or [],
        "enviado": enviado,
    }, status_code=status_code)


@app.get("/quarto/{id}", response_class=HTMLResponse)
def detalhes(
    request: Request,
    id: int,
    services: ServiceFactory = Depends(get_public_services),
    propriedade=Depends(get_propriedade_info),
):
    quarto = services.get_quarto_service().get_room_with_images(id)
    if not quarto:
        raise HTTPException(status_code=404, detail="Quarto não encontrado")
    enviado = request.query_params.get("enviado") == "1"
    return _render_quarto(request, quarto, propriedade, enviado=enviado)


@app.post("/quarto/{id}/reservar")
def reservar(
    request: Request,
    id: int,
    nome: str = Form(""),
    email: str = Form(""),
    telefone: str = Form(""),
    data_checkin: str = Form(""),
    data_checkout: str = Form(""),
    num_hospedes: str = Form("1"),
    mensagem: str = Form(""),
    services: ServiceFactory = Depends(get_public_services),
    propriedade=Depends(get_propriedade_info),
):
    quarto = services.get_quarto_service().get_room_with_images(id)
    if not quarto:
        raise HTTPException(status_code=404, detail="Quarto não encontrado")

    dados = CreateReservaData(
        quarto_id=id,
        nome_hospede=nome,
        email_hospede=email,
        telefone_hospede=telefone,
        data_checkin=to_date(data_checkin),
        data_checkout=to_date(data_checkout),
        num_hospedes=to_int(num_hospedes),
        mensagem=mensagem or None,
    )

    try:
        services.get_reserva_service().create(dados, quarto=quarto)
    except ValidationFailed as e:
        form = dict(nome=nome, email=email, telefone=telefone, data_checkin=data_checkin,
                    data_checkout=data_checkout, num_hospedes=num_hospedes, mensagem=mensagem)
        return _render_quarto(request, quarto, propriedade, form=form, errors=e.errors, status_code=400)
    except RepositoryError:
        return _render_quarto(
            request, quarto, propriedade,
            errors=["Ocorreu um erro ao enviar sua reserva. Por favor, tente novamente."],
            status_code=500,
        )

    return redirect(f"/quarto/{id}?enviado=1")


# =========================================================================
# 9. ROTAS ADMIN (LOGIN / LOGOUT / PAINEL)
# =========================================================================

@app.get("/admin/login", response_class=HTMLResponse)
def login_page(request: Request):
    return templates.TemplateResponse(request, "admin/login.html", {})


@app.post("/admin/login")
def login_post(request: Request, email: str = Form(...), password: str = Form(...)):
    try:
        response = create_auth_client().auth.sign_in_with_password(
            {"email": email, "password": password}
        )
    except AuthError as e:
        if "Invalid login credentials" in str(e):
            error = "Credenciais inválidas. Por favor, verifique o email e a senha."
        else:
            logger.warning("Falha no login de %s: %s", email, e)
            error = f"Erro ao fazer login: {e}"
        return templates.TemplateResponse(
            request, "admin/login.html", {"error": error, "email": email}, status_code=401
        )

    session = response.session
    redirect_response = redirect("/admin")
    redirect_response.set_cookie(
        key=COOKIE_NAME,
        value=session.access_token,
        httponly=True,
        secure=SECURE_COOKIES,
        samesite="lax",
        max_age=session.expires_in or 60 * 60,
    )
    logger.info("Admin %s entrou", email)
    return redirect_response


@app.get("/admin/logout")
def logout():
    response = redirect("/")
    response.delete_cookie(key=COOKIE_NAME)
    return response


@app.get("/admin", response_class=HTMLResponse)
def admin_dashboard(
    request: Request,
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    reservas = services.get_reserva_service()
    stats = services.get_quarto_service().dashboard_stats()
    stats["reservas_pendentes"] = reservas.count_pending()

    return templates.TemplateResponse(request, "admin/dashboard.html", {
        "admin": admin,
        "stats": stats,
        "recentes": reservas.get_recent(5),
    })


# =========================================================================
# 10. ADMIN QUARTOS (CRUD + IMAGENS)
# =========================================================================

def _quarto_form_data(nome, descricao, preco_noite, capacidade, tamanho_m2, comodidades, disponivel):
    return CreateQuartoData(
        nome=nome,
        descricao=descricao,
        preco_noite=to_float(preco_noite),
        capacidade=to_int(capacidade),
        tamanho_m2=to_float(tamanho_m2),
        comodidades=parse_comodidades(comodidades),
        disponivel=disponivel is not None,
    )


def _existing_images(urls: List[str], ordens: List[str]) -> List[ImagemInput]:
    imagens = []
    for index, url in enumerate(urls):
        ordem = to_int(ordens[index]) if index < len(ordens) else index
        imagens.append(ImagemInput(url=url, ordem=ordem))
    return imagens


def _render_quarto_form(request, admin, quarto_id, dados, imagens, errors, status_code=200):
    return templates.TemplateResponse(request, "admin/quarto_form.html", {
        "admin": admin,
        "quarto_id": quarto_id,
        "dados": dados,
        "imagens": imagens,
        "errors": errors,
    }, status_code=status_code)


@app.get("/admin/quartos", response_class=HTMLResponse)
def admin_quartos(
    request: Request,
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    return templates.TemplateResponse(request, "admin/quartos.html", {
        "admin": admin,
        "quartos": services.get_quarto_service().get_rooms_with_cover(),
        "mensagem": flash(request),
    })


@app.get("/admin/quartos/novo", response_class=HTMLResponse)
def admin_novo_quarto(request: Request, admin: AdminSession = Depends(check_admin)):
    return _render_quarto_form(request, admin, None, CreateQuartoData(), [], [])


@app.post("/admin/quartos")
def admin_criar_quarto(
    request: Request,
    nome: str = Form(""),
    descricao: str = Form(""),
    preco_noite: str = Form(""),
    capacidade: str = Form(""),
    tamanho_m2: str = Form(""),
    comodidades: List[str] = Form(default=[]),
    disponivel: Optional[str] = Form(None),
    novas_imagens: List[UploadFile] = File(default=[]),
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    dados = _quarto_form_data(nome, descricao, preco_noite, capacidade, tamanho_m2, comodidades, disponivel)
    try:
        services.get_quarto_service().save_room(dados, [], read_uploads(novas_imagens))
    except ValidationFailed as e:
        return _render_quarto_form(request, admin, None, dados, [], e.errors, status_code=400)
    except ServiceError as e:
        return _render_quarto_form(request, admin, None, dados, [], [str(e)], status_code=502)

    return with_message("/admin/quartos", "Novo quarto criado com sucesso!")


@app.get("/admin/quartos/{id}/editar", response_class=HTMLResponse)
def admin_editar_quarto_form(
    request: Request,
    id: int,
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    quarto = services.get_quarto_service().get_room_with_images(id)
    if not quarto:
        return redirect("/admin/quartos")

    imagens = [ImagemInput(url=img.url, ordem=img.ordem) for img in quarto.imagens]
    dados = CreateQuartoData(**quarto.model_dump(exclude={"imagens"}))
    return _render_quarto_form(request, admin, id, dados, imagens, [])


@app.post("/admin/quartos/{id}/editar")
def admin_editar_quarto(
    request: Request,
    id: int,
    nome: str = Form(""),
    descricao: str = Form(""),
    preco_noite: str = Form(""),
    capacidade: str = Form(""),
    tamanho_m2: str = Form(""),
    comodidades: List[str] = Form(default=[]),
    disponivel: Optional[str] = Form(None),
    imagens_url: List[str] = Form(default=[]),
    imagens_ordem: List[str] = Form(default=[]),
    novas_imagens: List[UploadFile] = File(default=[]),
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    dados = _quarto_form_data(nome, descricao, preco_noite, capacidade, tamanho_m2, comodidades, disponivel)
    existentes = _existing_images(imagens_url, imagens_ordem)
    try:
        services.get_quarto_service().save_room(dados, existentes, read_uploads(novas_imagens), quarto_id=id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Quarto não encontrado")
    except ValidationFailed as e:
        return _render_quarto_form(request, admin, id, dados, existentes, e.errors, status_code=400)
    except ServiceError as e:
        return _render_quarto_form(request, admin, id, dados, existentes, [str(e)], status_code=502)

    return with_message("/admin/quartos", "Quarto atualizado com sucesso!")


@app.post("/admin/quartos/{id}/disponibilidade")
def admin_alternar_disponibilidade(
    id: int,
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    try:
        services.get_quarto_service().toggle_availability(id)
    except NotFound as e:
        return with_message("/admin/quartos", str(e), "erro")
    return redirect("/admin/quartos")


@app.post("/admin/quartos/{id}/excluir")
def admin_excluir_quarto(
    id: int,
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    try:
        services.get_quarto_service().delete(id)
    except ValidationFailed as e:
        return with_message("/admin/quartos", str(e), "erro")
    return with_message("/admin/quartos", "Quarto excluído com sucesso!")


# =========================================================================
# 11. ADMIN RESERVAS
# =========================================================================

@app.get("/admin/reservas", response_class=HTMLResponse)
def admin_reservas(
    request: Request,
    estado: str = "todos",
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    service = services.get_reserva_service()
    if estado in ESTADOS_RESERVA:
        reservas = service.get_by_status(estado)
    else:
        estado = "todos"
        reservas = service.get_all()

    return templates.TemplateResponse(request, "admin/reservas.html", {
        "admin": admin,
        "reservas": reservas,
        "filtro_estado": estado,
        "estados": ESTADOS_RESERVA,
        "mensagem": flash(request),
    })


@app.post("/admin/reservas/{id}/estado")
def admin_atualizar_estado(
    id: int,
    estado: str = Form(...),
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    try:
        services.get_reserva_service().update_status(id, estado)
    except ValidationFailed as e:
        return with_message("/admin/reservas", str(e), "erro")
    return with_message("/admin/reservas", "Estado da reserva atualizado com sucesso!")


@app.post("/admin/reservas/{id}/excluir")
def admin_excluir_reserva(
    id: int,
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    try:
        services.get_reserva_service().delete(id)
    except ValidationFailed as e:
        return with_message("/admin/reservas", str(e), "erro")
    return with_message("/admin/reservas", "Reserva excluída com sucesso!")


# =========================================================================
# 12. ADMIN PROPRIEDADE / COMODIDADES / HERO
# =========================================================================

def _propriedade_atual(services: ServiceFactory):
    propriedade = services.get_propriedade_service().get_current()
    if propriedade is None:
        raise HTTPException(status_code=404, detail="Propriedade não configurada")
    return propriedade


@app.get("/admin/propriedade", response_class=HTMLResponse)
def admin_propriedade(
    request: Request,
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    propriedade = _propriedade_atual(services)
    comodidades = services.get_comodidade_service().list_all()
    selecionadas = services.get_propriedade_service().selected_amenity_ids(propriedade.id)

    return templates.TemplateResponse(request, "admin/propriedade.html", {
        "admin": admin,
        "propriedade": propriedade,
        "comodidades": comodidades,
        "selecionadas": selecionadas,
        "deletavel": is_amenity_deletable,
        "icones": ICONES_COMODIDADE,
        "mensagem": flash(request),
    })


@app.post("/admin/propriedade")
def admin_salvar_propriedade(
    nome: str = Form(""),
    descricao: str = Form(""),
    morada: str = Form(""),
    sobre_footer: str = Form(""),
    telefone: str = Form(""),
    email: str = Form(""),
    horario_checkin: str = Form(""),
    horario_checkout: str = Form(""),
    horario_rececao: str = Form(""),
    hero_image_url: str = Form(""),
    titulo_quartos: str = Form(""),
    descricao_quartos: str = Form(""),
    titulo_comodidades: str = Form(""),
    descricao_comodidades: str = Form(""),
    link_externo_url: str = Form(""),
    link_externo_texto: str = Form(""),
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    propriedade = _propriedade_atual(services)
    dados = dict(
        nome=nome, descricao=descricao, morada=morada, sobre_footer=sobre_footer,
        telefone=telefone, email=email, horario_checkin=horario_checkin,
        horario_checkout=horario_checkout, horario_rececao=horario_rececao,
        hero_image_url=hero_image_url, titulo_quartos=titulo_quartos,
        descricao_quartos=descricao_quartos, titulo_comodidades=titulo_comodidades,
        descricao_comodidades=descricao_comodidades, link_externo_url=link_externo_url,
        link_externo_texto=link_externo_texto,
    )
    try:
        services.get_propriedade_service().update(propriedade.id, dados)
    except ValidationFailed as e:
        return with_message("/admin/propriedade", str(e), "erro")
    return with_message("/admin/propriedade", "Informações da propriedade atualizadas com sucesso!")


@app.post("/admin/propriedade/hero")
def admin_hero(
    file_capa: Optional[UploadFile] = File(None),
    remover: Optional[str] = Form(None),
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    propriedade = _propriedade_atual(services)
    service = services.get_propriedade_service()

    if remover:
        service.set_hero_image(propriedade.id, None)
        return with_message("/admin/propriedade", "Imagem de capa removida.")

    if not file_capa or not file_capa.filename:
        return with_message("/admin/propriedade", "Escolha uma imagem.", "erro")

    content = file_capa.file.read()
    try:
        url = services.get_image_upload_service().upload(
            content, file_capa.content_type, public_id="hero"
        )
    except ImageUploadError as e:
        logger.error("❌ ERRO upload hero (%s, %.2fMB): %s", file_capa.filename, len(content) / 1024 / 1024, e)
        return with_message("/admin/propriedade", str(e), "erro")

    service.set_hero_image(propriedade.id, url)
    return with_message("/admin/propriedade", "Imagem de capa carregada com sucesso!")


@app.post("/admin/comodidades")
def admin_adicionar_comodidade(
    nome: str = Form(""),
    descricao: str = Form(""),
    icone: str = Form("CheckCircle"),
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    propriedade = _propriedade_atual(services)
    try:
        services.get_comodidade_service().create(
            {"nome": nome, "descricao": descricao, "icone": icone},
            propriedade_id=propriedade.id,
        )
    except ValidationFailed as e:
        return with_message("/admin/propriedade", str(e), "erro")
    return with_message("/admin/propriedade", "Comodidade adicionada com sucesso!")


@app.post("/admin/comodidades/{id}/alternar")
def admin_alternar_comodidade(
    id: int,
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    propriedade = _propriedade_atual(services)
    services.get_propriedade_service().toggle_amenity(propriedade.id, id)
    return redirect("/admin/propriedade")


@app.post("/admin/comodidades/{id}/excluir")
def admin_excluir_comodidade(
    id: int,
    admin: AdminSession = Depends(check_admin),
    services: ServiceFactory = Depends(get_admin_services),
):
    try:
        services.get_comodidade_service().delete(id)
    except (NotFound, OperationNotAllowed) as e:
        return with_message("/admin/propriedade", str(e), "erro")
    return with_message("/admin/propriedade", "Comodidade excluída com sucesso!")

# media.py
"""
Imagens dos quartos e da capa (hero).

O armazenamento e as transformações ficam no Cloudinary; aqui só se
valida o ficheiro, comprime (Pillow) e envia.
"""
import io
import logging
import os
import re
import time
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import cloudinary.utils
from PIL import Image, UnidentifiedImageError

from validators import ValidationResult

logger = logging.getLogger(__name__)

# =========================================================================
# CONFIG
# =========================================================================

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "")
# Sem API secret, faz upload "unsigned" com este preset
CLOUDINARY_UPLOAD_PRESET = os.getenv("CLOUDINARY_UPLOAD_PRESET", "unsigned_preset")

PASTA_QUARTOS = "alojamento-local/quartos"
PASTA_GERAL = "alojamento-local/geral"

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
MIN_WIDTH = 800
MIN_HEIGHT = 600
ALLOWED_TYPES = ("image/jpeg", "image/jpg")

COMPRESS_MAX_SIDE = 1920
COMPRESS_TARGET_BYTES = 512 * 1024
COMPRESS_QUALITY = 80

if CLOUDINARY_CLOUD_NAME:
    cloudinary.config(
        cloud_name=CLOUDINARY_CLOUD_NAME,
        api_key=CLOUDINARY_API_KEY or None,
        api_secret=CLOUDINARY_API_SECRET or None,
        secure=True,
    )


class ImageUploadError(Exception):
    pass


def _mb(size: int) -> str:
    return f"{size / 1024 / 1024:.1f}"


# =========================================================================
# VALIDAÇÃO / COMPRESSÃO
# =========================================================================

def validate_image(content: bytes, content_type: Optional[str]) -> ValidationResult:
    content_type = (content_type or "").lower()
    if content_type not in ALLOWED_TYPES:
        return ValidationResult([
            f"Tipo de arquivo não suportado: {content_type}. "
            "Apenas imagens JPG/JPEG são permitidas."
        ])

    if len(content) > MAX_FILE_SIZE:
        return ValidationResult([
            f"Arquivo muito grande: {_mb(len(content))}MB. "
            f"O tamanho máximo permitido é {_mb(MAX_FILE_SIZE)}MB."
        ])

    try:
        with Image.open(io.BytesIO(content)) as img:
            width, height = img.size
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        return ValidationResult([
            "Arquivo de imagem corrompido ou inválido. Tente com outra imagem."
        ])

    if width < MIN_WIDTH or height < MIN_HEIGHT:
        return ValidationResult([
            f"Resolução muito baixa: {width}x{height}px. "
            f"A imagem deve ter no mínimo {MIN_WIDTH}x{MIN_HEIGHT}px."
        ])

    return ValidationResult()


def compress_image(content: bytes) -> bytes:
    """JPEG com o lado maior <= 1920px, baixando a qualidade até ~0.5MB."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            img = img.convert("RGB")
            img.thumbnail((COMPRESS_MAX_SIDE, COMPRESS_MAX_SIDE))

            quality = COMPRESS_QUALITY
            while True:
                buffer = io.BytesIO()
                img.save(buffer, format="JPEG", quality=quality, optimize=True)
                if buffer.tell() <= COMPRESS_TARGET_BYTES or quality <= 40:
                    return buffer.getvalue()
                quality -= 10
    except (UnidentifiedImageError, OSError) as e:
        logger.error("Erro ao comprimir imagem: %r", e)
        raise ImageUploadError(f"Falha ao comprimir imagem: {e}") from e


# =========================================================================
# IDS / URLS
# =========================================================================

def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_public_id(quarto_id: int, ordem: int) -> str:
    return f"quarto_{quarto_id}_imagem_{ordem}_{_now_ms()}"


def generate_general_public_id(tipo: str) -> str:
    return f"{tipo}_{_now_ms()}"


def generate_image_url(public_id: str, **options) -> str:
    url, _ = cloudinary.utils.cloudinary_url(public_id, secure=True, **options)
    return url


def optimized_image_url(url: Optional[str], width: int = 800) -> str:
    """
    Versão otimizada de uma URL do Cloudinary (formato/qualidade auto,
    largura fixa). Outras URLs passam sem alteração.
    """
    if not url or "res.cloudinary.com" not in url or "/upload/" not in url:
        return url or ""

    base, public_part = url.split("/upload/", 1)
    transformations = ",".join(["f_auto", "q_auto:good", f"w_{width}", "c_fill"])
    return f"{base}/upload/{transformations}/{public_part}"


# =========================================================================
# UPLOAD
# =========================================================================

def _upload(content: bytes, folder: str, public_id: str, width: int, height: int) -> str:
    options = {
        "folder": folder,
        "public_id": public_id,
        "resource_type": "image",
        "transformation": [{"width": width, "height": height, "crop": "fill", "gravity": "auto"}],
    }
    try:
        if CLOUDINARY_API_SECRET:
            response = cloudinary.uploader.upload(content, **options)
        else:
            response = cloudinary.uploader.unsigned_upload(content, CLOUDINARY_UPLOAD_PRESET, **options)
    except cloudinary.exceptions.Error as e:
        logger.error("Cloudinary upload falhou folder=%s public_id=%s: %r", folder, public_id, e)
        raise ImageUploadError(f"Erro do Cloudinary: {e}") from e

    url = (response or {}).get("secure_url")
    if not url:
        logger.error("Resposta inválida do Cloudinary: %r", response)
        raise ImageUploadError("Resposta inválida do servidor: URL da imagem não encontrada")

    logger.info("Upload concluído: %s", url)
    return url


def upload_room_image(content: bytes, quarto_id: int, ordem: int) -> str:
    return _upload(
        content,
        folder=f"{PASTA_QUARTOS}/{quarto_id}",
        public_id=generate_public_id(quarto_id, ordem),
        width=800,
        height=500,
    )


def upload_general_image(content: bytes, tipo: str) -> str:
    return _upload(
        content,
        folder=PASTA_GERAL,
        public_id=generate_general_public_id(tipo),
        width=1920,
        height=1080,
    )


class ImageUploadService:
    """validar -> comprimir -> enviar (quarto ou geral, pela pasta)."""

    def validate(self, content: bytes, content_type: Optional[str]) -> ValidationResult:
        return validate_image(content, content_type)

    def compress(self, content: bytes) -> bytes:
        return compress_image(content)

    def upload(
        self,
        content: bytes,
        content_type: Optional[str],
        folder: Optional[str] = None,
        public_id: Optional[str] = None,
    ) -> str:
        validation = self.validate(content, content_type)
        if not validation.is_valid:
            raise ImageUploadError(", ".join(validation.errors))

        compressed = self.compress(content)

        if folder and "quartos" in folder and public_id:
            return upload_room_image(
                compressed,
                self._extract_number(public_id, r"quarto_(\d+)"),
                self._extract_number(public_id, r"imagem_(\d+)"),
            )
        return upload_general_image(compressed, public_id or "general")

    def upload_room_image(self, content: bytes, content_type: Optional[str], quarto_id: int, ordem: int) -> str:
        return self.upload(
            content,
            content_type,
            folder=PASTA_QUARTOS,
            public_id=f"quarto_{quarto_id}_imagem_{ordem}",
        )

    @staticmethod
    def _extract_number(public_id: str, pattern: str) -> int:
        match = re.search(pattern, public_id)
        return int(match.group(1)) if match else 0

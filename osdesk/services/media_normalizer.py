"""
OSDesk - Normalização de mídia
Classifica (MIME primeiro, extensão como reserva), converte HEIC/HEIF para
JPEG, redimensiona e recomprime imagens, e valida vídeos.

Vídeos não são recodificados: só validamos tamanho e corrigimos o MIME.
Câmeras de celular frequentemente mandam MIME vazio ou genérico, por isso a
extensão do arquivo é sempre consultada como reserva.
"""
import asyncio
import enum
import io
import logging
import os
from dataclasses import dataclass
from typing import Optional, Callable, BinaryIO, Union, AsyncIterator

from PIL import Image, ImageOps, UnidentifiedImageError
import pillow_heif

from osdesk.config import get_settings

logger = logging.getLogger("media_normalizer")

pillow_heif.register_heif_opener()

ProgressCallback = Callable[[int], None]

MB = 1024 * 1024
STREAM_CHUNK_SIZE = 1 * MB

GENERIC_MIME_TYPES = {"", "application/octet-stream", "binary/octet-stream", "image/*", "video/*"}

HEIC_MIME_TYPES = {"image/heic", "image/heif", "image/heic-sequence", "image/heif-sequence"}
HEIC_EXTENSIONS = {"heic", "heif"}

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "gif", "bmp", "tif", "tiff"}

VIDEO_MIME_BY_EXTENSION = {
    "mp4": "video/mp4",
    "m4v": "video/x-m4v",
    "mov": "video/quicktime",
    "qt": "video/quicktime",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    "wmv": "video/x-ms-wmv",
    "3gp": "video/3gpp",
    "3g2": "video/3gpp2",
    "mpeg": "video/mpeg",
    "mpg": "video/mpeg",
    "ogv": "video/ogg",
}
VIDEO_EXTENSION_BY_MIME = {
    "video/mp4": "mp4",
    "video/x-m4v": "m4v",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "video/x-matroska": "mkv",
    "video/x-msvideo": "avi",
    "video/x-ms-wmv": "wmv",
    "video/3gpp": "3gp",
    "video/3gpp2": "3g2",
    "video/mpeg": "mpeg",
    "video/ogg": "ogv",
}

ACCEPTED_CATEGORIES = "imagens (JPG, PNG, WEBP, GIF, BMP, TIFF, HEIC/HEIF) e vídeos (MP4, MOV, WEBM, MKV, AVI, 3GP)"


class MediaKind(str, enum.Enum):
    HEIC = "heic"
    IMAGE = "image"
    VIDEO = "video"


class MediaError(Exception):
    """Erro ao processar um arquivo de mídia."""

    def __init__(self, file_name: str, message: str):
        super().__init__(message)
        self.file_name = file_name


class UnsupportedMediaError(MediaError):
    pass


class VideoTooLargeError(MediaError):
    pass


class ImageProcessingError(MediaError):
    pass


class HeicConversionError(ImageProcessingError):
    pass


@dataclass
class IncomingMedia:
    """Arquivo recebido do cliente (galeria, câmera nativa ou câmera da página)."""
    name: str
    content_type: Optional[str]
    size: int
    file: BinaryIO


@dataclass
class ProcessedMedia:
    name: str                    # nome original (ou com .jpg após conversão)
    content_type: str
    kind: MediaKind              # IMAGE ou VIDEO
    extension: str               # extensão usada no path do storage, sem ponto
    size: int
    content: Union[bytes, AsyncIterator[bytes]]

    @property
    def media_type(self) -> str:
        return "video" if self.kind == MediaKind.VIDEO else "image"


def file_extension(name: str) -> str:
    return os.path.splitext(name or "")[1].lstrip(".").lower()


def classify_media(name: str, content_type: Optional[str]) -> Optional[MediaKind]:
    """
    Classifica pelo MIME e, se ele for vazio/genérico, pela extensão.
    Retorna None quando nem um nem outro é reconhecido.
    """
    mime = (content_type or "").lower().strip()
    ext = file_extension(name)

    if mime in HEIC_MIME_TYPES:
        return MediaKind.HEIC
    if mime not in GENERIC_MIME_TYPES:
        if mime.startswith("image/"):
            return MediaKind.HEIC if ext in HEIC_EXTENSIONS else MediaKind.IMAGE
        if mime.startswith("video/"):
            return MediaKind.VIDEO

    if ext in HEIC_EXTENSIONS:
        return MediaKind.HEIC
    if ext in IMAGE_EXTENSIONS:
        return MediaKind.IMAGE
    if ext in VIDEO_MIME_BY_EXTENSION:
        return MediaKind.VIDEO
    return None


def target_size(width: int, height: int, max_dimension: int) -> tuple:
    """Limita as duas dimensões a max_dimension mantendo a proporção."""
    if width <= max_dimension and height <= max_dimension:
        return width, height
    if width > height:
        return max_dimension, max(1, round(height * max_dimension / width))
    return max(1, round(width * max_dimension / height)), max_dimension


def jpeg_name(name: str) -> str:
    base = os.path.splitext(name or "")[0] or "foto"
    return f"{base}.jpg"


def format_file_size(size: int) -> str:
    if size == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def _to_rgb(img: Image.Image) -> Image.Image:
    """Remove transparência (fundo branco) para salvar em JPEG."""
    if img.mode in ("RGBA", "LA", "P"):
        if img.mode == "P":
            img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def _encode_jpeg(img: Image.Image, quality: int) -> bytes:
    output = io.BytesIO()
    img.save(output, format="JPEG", quality=quality, optimize=True)
    return output.getvalue()


class MediaNormalizer:
    """
    Prepara arquivos para upload.

    Uso:
        normalizer = MediaNormalizer()
        processed = await normalizer.normalize(incoming, on_progress=print)
    """

    def __init__(
        self,
        max_dimension: Optional[int] = None,
        quality: Optional[int] = None,
        max_video_size_mb: Optional[int] = None,
    ):
        settings = get_settings()
        self.max_dimension = max_dimension or settings.MAX_IMAGE_DIMENSION
        self.quality = quality or settings.IMAGE_QUALITY
        self.max_video_size_mb = max_video_size_mb or settings.MAX_VIDEO_SIZE_MB

    async def normalize(
        self, raw: IncomingMedia, on_progress: Optional[ProgressCallback] = None
    ) -> ProcessedMedia:
        kind = classify_media(raw.name, raw.content_type)

        if kind is None:
            raise UnsupportedMediaError(
                raw.name,
                f"Tipo de arquivo não suportado: {raw.name}. Aceitos: {ACCEPTED_CATEGORIES}",
            )

        if kind == MediaKind.VIDEO:
            return self.prepare_video(raw)

        data = await asyncio.to_thread(raw.file.read)
        name = raw.name
        if kind == MediaKind.HEIC:
            data = await self.convert_heic(raw.name, data)
            name = jpeg_name(raw.name)

        return await self.compress_image(name, data, on_progress)

    # ================================================================
    # HEIC
    # ================================================================

    async def convert_heic(self, name: str, data: bytes) -> bytes:
        """HEIC/HEIF → JPEG. Obrigatório: o formato não é exibível em todo lugar."""
        def _convert() -> bytes:
            heif_file = pillow_heif.open_heif(io.BytesIO(data))
            img = heif_file.to_pillow()
            return _encode_jpeg(_to_rgb(img), self.quality)

        try:
            converted = await asyncio.to_thread(_convert)
        except (ValueError, OSError, RuntimeError) as e:
            raise HeicConversionError(name, f"Falha ao converter HEIC {name}: {e}")

        logger.info(f"HEIC convertido: {name} ({format_file_size(len(data))} → {format_file_size(len(converted))})")
        return converted

    # ================================================================
    # IMAGEM
    # ================================================================

    async def compress_image(
        self, name: str, data: bytes, on_progress: Optional[ProgressCallback] = None
    ) -> ProcessedMedia:
        def report(value: int):
            if on_progress:
                on_progress(value)

        report(10)
        try:
            img = await asyncio.to_thread(self._decode, data)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ImageProcessingError(name, f"Falha ao carregar imagem {name}: {e}")
        report(30)

        width, height = target_size(img.width, img.height, self.max_dimension)
        if (width, height) != img.size:
            img = await asyncio.to_thread(img.resize, (width, height), Image.Resampling.LANCZOS)
        report(50)

        try:
            encoded = await asyncio.to_thread(_encode_jpeg, img, self.quality)
        except (OSError, ValueError) as e:
            raise ImageProcessingError(name, f"Falha ao comprimir imagem {name}: {e}")
        report(65)

        logger.info(
            f"Imagem comprimida: {name} ({format_file_size(len(data))} → {format_file_size(len(encoded))}, "
            f"{width}x{height})"
        )
        return ProcessedMedia(
            name=jpeg_name(name),
            content_type="image/jpeg",
            kind=MediaKind.IMAGE,
            extension="jpg",
            size=len(encoded),
            content=encoded,
        )

    @staticmethod
    def _decode(data: bytes) -> Image.Image:
        img = Image.open(io.BytesIO(data))
        img.load()
        img = ImageOps.exif_transpose(img)
        return _to_rgb(img)

    # ================================================================
    # VÍDEO
    # ================================================================

    def prepare_video(self, raw: IncomingMedia) -> ProcessedMedia:
        """
        Valida o tamanho e corrige o MIME. O conteúdo segue intacto, em
        blocos, direto do arquivo recebido.
        """
        size_mb = raw.size / MB
        if size_mb > self.max_video_size_mb:
            raise VideoTooLargeError(
                raw.name,
                f"Vídeo muito grande: {raw.name} ({size_mb:.2f}MB). Tamanho máximo: {self.max_video_size_mb}MB",
            )

        mime = (raw.content_type or "").lower().strip()
        ext = file_extension(raw.name)
        if mime in GENERIC_MIME_TYPES or not mime.startswith("video/"):
            mime = VIDEO_MIME_BY_EXTENSION.get(ext, "video/mp4")
        if ext not in VIDEO_MIME_BY_EXTENSION:
            ext = VIDEO_EXTENSION_BY_MIME.get(mime, "mp4")

        logger.info(f"Vídeo preparado para upload: {raw.name} ({size_mb:.2f}MB, {mime})")
        return ProcessedMedia(
            name=raw.name,
            content_type=mime,
            kind=MediaKind.VIDEO,
            extension=ext,
            size=raw.size,
            content=_stream_file(raw.file),
        )


async def _stream_file(file: BinaryIO) -> AsyncIterator[bytes]:
    while True:
        chunk = await asyncio.to_thread(file.read, STREAM_CHUNK_SIZE)
        if not chunk:
            break
        yield chunk

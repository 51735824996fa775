"""
OSDesk - Utilitários de segurança da API de integração
"""
import re

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def escape_ilike(value: str) -> str:
    """Escapa %, _ e \\ para usar o valor como literal num padrão ILIKE."""
    return re.sub(r"([%_\\])", r"\\\1", value)


def is_valid_uuid(value) -> bool:
    return isinstance(value, str) and bool(UUID_RE.match(value))


def sanitize_string(value, max_length: int = 200) -> str:
    """Remove caracteres de controle (exceto \\n e \\t), apara e limita o tamanho."""
    if not value or not isinstance(value, str):
        return ""
    return CONTROL_CHARS_RE.sub("", value).strip()[:max_length]


def safe_error_message(error) -> str:
    """Mensagem externa sem detalhes internos do banco."""
    if not isinstance(error, Exception):
        return "An error occurred processing your request"

    message = str(error).lower()

    if "jwt" in message or "auth" in message or "token" in message:
        return "Authentication failed"
    if "not found" in message or "no rows" in message:
        return "Resource not found"
    if "uuid" in message or "invalid input syntax" in message:
        return "Invalid request format"
    if "constraint" in message or "violates" in message:
        return "Operation not allowed due to data constraints"
    if "rate limit" in message or "too many" in message:
        return "Too many requests, please try again later"

    return "An error occurred processing your request"

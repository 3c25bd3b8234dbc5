"""User-facing texts for API failures.

The backend answers errors with ``{"success": false, "error": "..."}`` and,
for validation failures, a list of field errors. These helpers turn a status
code and body into one display string.
"""

from __future__ import annotations

from typing import Any, Optional

GENERIC_ERROR = "Ocorreu um erro. Tente novamente."
TIMEOUT_ERROR = "A requisição demorou demais para responder. Verifique sua conexão."
UNREACHABLE_ERROR = "Não foi possível conectar ao servidor. Verifique sua conexão."

STATUS_MESSAGES: dict[int, str] = {
    400: "Requisição inválida. Verifique os dados enviados.",
    401: "Sessão expirada. Faça login novamente.",
    403: "Você não tem permissão para realizar esta ação.",
    404: "Recurso não encontrado.",
    422: "Dados inválidos. Verifique os campos do formulário.",
    429: "Muitas requisições. Aguarde um momento e tente novamente.",
    500: "Erro interno do servidor. Tente novamente mais tarde.",
    503: "Serviço temporariamente indisponível. Tente novamente mais tarde.",
}

FORCED_LOGOUT_WARNING = "Sua sessão expirou. Você será redirecionado para o login em {seconds} segundos."


def payload_message(payload: Any) -> Optional[str]:
    """Return the server-provided error text, if any."""
    if not isinstance(payload, dict):
        return None
    for key in ("error", "message"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def flatten_validation_errors(payload: Any) -> list[str]:
    """Collect field-level errors from a validation response.

    Accepts ``errors``/``details`` as a list of strings, a list of
    ``{"field", "message"}`` objects, or a ``{field: [messages]}`` mapping.
    """
    if not isinstance(payload, dict):
        return []
    raw = payload.get("errors")
    if raw is None:
        raw = payload.get("details")
    flattened: list[str] = []
    if isinstance(raw, dict):
        for field, value in raw.items():
            items = value if isinstance(value, list) else [value]
            for item in items:
                if item:
                    flattened.append(f"{field}: {item}")
    elif isinstance(raw, list):
        for item in raw:
            if isinstance(item, str):
                if item.strip():
                    flattened.append(item.strip())
            elif isinstance(item, dict):
                text = item.get("message") or item.get("msg")
                if not text:
                    continue
                field = item.get("field") or item.get("path") or item.get("param")
                flattened.append(f"{field}: {text}" if field else str(text))
    return flattened


def message_for_status(status_code: int, payload: Any = None) -> str:
    if status_code == 422:
        field_errors = flatten_validation_errors(payload)
        if field_errors:
            return "; ".join(field_errors)
        return payload_message(payload) or STATUS_MESSAGES[422]
    if 400 <= status_code < 500 and status_code != 401:
        server_text = payload_message(payload)
        if server_text:
            return server_text
    return STATUS_MESSAGES.get(status_code, GENERIC_ERROR)


def forced_logout_message(seconds: float) -> str:
    return FORCED_LOGOUT_WARNING.format(seconds=int(round(seconds)))

from __future__ import annotations

from typing import Any, Dict

from app.ui_strings import error_message


class AppError(Exception):
    """Erro com codigo estavel, mensagem amigavel (ui_strings) e status HTTP.

    `payload` e mesclado na resposta JSON; `details` so vai para o log.
    """

    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or code or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "Nao foi possivel concluir a operacao.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.user_message(), "request_id": request_id}
        return {**body, **self.payload}


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    default_code = "validation_error"
    default_message_key = "status_invalid"
    default_http_status = 400
    default_critical = False


class NotFoundError(ValidationError):
    default_code = "not_found"
    default_message_key = "not_found"
    default_http_status = 404


class InvalidSelection(ValidationError):
    """Supplier chosen for a tie-break is not part of the item's tie group."""

    default_code = "invalid_selection"
    default_message_key = "invalid_selection"
    default_http_status = 400


class NoResponseFound(ValidationError):
    """Supplier never answered the item, so it cannot be picked as winner."""

    default_code = "no_response_found"
    default_message_key = "no_response_found"
    default_http_status = 422


class ConcurrencyConflict(UserActionError):
    """A conditional write lost against another writer; the caller must refresh."""

    default_code = "already_decided"
    default_message_key = "already_decided"
    default_http_status = 409
    default_critical = False


class DataIntegrityError(AppError):
    default_code = "data_integrity_violation"
    default_message_key = "data_integrity_violation"
    default_http_status = 422
    default_critical = True


class MissingResponseData(DataIntegrityError):
    default_code = "missing_response_data"
    default_message_key = "missing_response_data"


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

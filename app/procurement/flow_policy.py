"""Acoes permitidas por etapa e status.

Toda mutacao de cotacao ou pedido passa por `require_action`; a resposta de
detalhe usa `flow_meta` e `build_process_steps` para montar a barra de etapas.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

from app.errors import ValidationError


@dataclass(frozen=True)
class StatusPolicy:
    allowed: Tuple[str, ...]
    primary: str | None = None


_NO_ACTIONS = StatusPolicy(allowed=())

PROCESS_STAGES: List[Dict[str, str]] = [
    {"key": "cotacao", "label": "Cotacao"},
    {"key": "decisao", "label": "Decisao"},
    {"key": "ordem_compra", "label": "Ordem"},
]

ACTION_LABELS: Dict[str, str] = {
    "edit_quote": "Editar cotacao",
    "add_item": "Adicionar item",
    "invite_supplier": "Convidar fornecedor",
    "open_quote": "Abrir cotacao",
    "cancel_quote": "Cancelar cotacao",
    "close_quote": "Encerrar cotacao",
    "save_response": "Registrar resposta",
    "submit_quote": "Enviar cotacao",
    "assign_winner": "Definir vencedor",
    "auto_select_winners": "Selecionar vencedores",
    "generate_purchase_orders": "Gerar pedidos de compra",
    "edit_order": "Editar pedido",
    "send_order": "Enviar pedido",
    "confirm_order": "Confirmar pedido",
    "deliver_order": "Registrar entrega",
    "cancel_order": "Cancelar pedido",
    "view_responses": "Ver respostas",
    "view_order": "Abrir pedido",
    "view_history": "Ver historico",
}

_DECISION_ACTIONS = ("assign_winner", "auto_select_winners", "generate_purchase_orders")
_SUPPLIER_EDIT = ("save_response", "submit_quote")
_HISTORY_ONLY = StatusPolicy(("view_history",), "view_history")

FLOW_POLICY: Dict[str, Dict[str, StatusPolicy]] = {
    "cotacao": {
        "draft": StatusPolicy(
            ("edit_quote", "add_item", "invite_supplier", "open_quote", "cancel_quote"),
            "open_quote",
        ),
        "open": StatusPolicy(
            ("edit_quote", "add_item", "invite_supplier")
            + _SUPPLIER_EDIT
            + _DECISION_ACTIONS
            + ("close_quote", "cancel_quote", "view_responses"),
            "close_quote",
        ),
        "closed": StatusPolicy(_DECISION_ACTIONS + ("view_responses",), "generate_purchase_orders"),
        "cancelled": _HISTORY_ONLY,
    },
    "fornecedor": {
        "pending": StatusPolicy(_SUPPLIER_EDIT, "save_response"),
        "viewed": StatusPolicy(_SUPPLIER_EDIT, "save_response"),
        "partial": StatusPolicy(_SUPPLIER_EDIT, "submit_quote"),
        "submitted": StatusPolicy(_SUPPLIER_EDIT + ("view_history",), "view_history"),
    },
    "ordem_compra": {
        "draft": StatusPolicy(("view_order", "edit_order", "send_order", "cancel_order"), "send_order"),
        "sent": StatusPolicy(("view_order", "confirm_order", "cancel_order"), "confirm_order"),
        "confirmed": StatusPolicy(("view_order", "deliver_order", "cancel_order"), "deliver_order"),
        "delivered": StatusPolicy(("view_order", "view_history"), "view_history"),
        "cancelled": _HISTORY_ONLY,
    },
}

# Status de destino -> acao exigida para chegar nele.
QUOTE_TRANSITION_ACTIONS: Dict[str, str] = {
    "open": "open_quote",
    "closed": "close_quote",
    "cancelled": "cancel_quote",
}

PURCHASE_ORDER_TRANSITION_ACTIONS: Dict[str, str] = {
    "sent": "send_order",
    "confirmed": "confirm_order",
    "delivered": "deliver_order",
    "cancelled": "cancel_order",
}

_QUOTE_STATUS_STAGE = {"closed": "decisao"}


def status_policy(stage: str, status: str | None) -> StatusPolicy:
    if not status:
        return _NO_ACTIONS
    return FLOW_POLICY.get(stage, {}).get(str(status), _NO_ACTIONS)


def allowed_actions(stage: str, status: str | None) -> List[str]:
    return list(status_policy(stage, status).allowed)


def primary_action(stage: str, status: str | None) -> str | None:
    return status_policy(stage, status).primary


def action_allowed(stage: str, status: str | None, action: str) -> bool:
    return bool(action) and action in status_policy(stage, status).allowed


def action_label(action: str, fallback: str | None = None) -> str:
    return ACTION_LABELS.get(action) or (fallback if fallback is not None else action)


def flow_meta(stage: str, status: str | None) -> Dict[str, object]:
    policy = status_policy(stage, status)
    return {
        "stage": stage,
        "status": status,
        "allowed_actions": list(policy.allowed),
        "primary_action": policy.primary,
        "primary_action_label": action_label(policy.primary) if policy.primary else None,
    }


def stage_for_quote_status(status: str | None) -> str:
    return _QUOTE_STATUS_STAGE.get(str(status or "").strip(), "cotacao")


def build_process_steps(current_stage: str) -> List[Dict[str, object]]:
    keys = [stage["key"] for stage in PROCESS_STAGES]
    current = keys.index(current_stage) if current_stage in keys else 0

    def _state(position: int) -> str:
        if position < current:
            return "completed"
        return "current" if position == current else "future"

    return [
        {"key": stage["key"], "label": stage["label"], "state": _state(position)}
        for position, stage in enumerate(PROCESS_STAGES)
    ]


def require_action(stage: str, status: str | None, action: str, http_status: int = 409) -> None:
    if action_allowed(stage, status, action):
        return
    raise ValidationError(
        code="action_not_allowed_for_status",
        http_status=http_status,
        payload={
            "stage": stage,
            "status": status,
            "action": action,
            "allowed_actions": allowed_actions(stage, status),
            "primary_action": primary_action(stage, status),
        },
    )

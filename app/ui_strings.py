from __future__ import annotations

from typing import Dict, List


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "cotacao": [
        {
            "key": "draft",
            "label": "Rascunho",
            "description": "Cotacao em preparacao, ainda sem fornecedores respondendo.",
        },
        {
            "key": "open",
            "label": "Aberta",
            "description": "Cotacao aberta para respostas dos fornecedores convidados.",
        },
        {
            "key": "closed",
            "label": "Encerrada",
            "description": "Janela de respostas encerrada, vencedores definidos.",
        },
        {
            "key": "cancelled",
            "label": "Cancelada",
            "description": "Cotacao encerrada sem continuidade.",
        },
    ],
    "fornecedor": [
        {
            "key": "pending",
            "label": "Pendente",
            "description": "Convite enviado, fornecedor ainda nao acessou.",
        },
        {
            "key": "viewed",
            "label": "Visualizado",
            "description": "Fornecedor abriu o convite.",
        },
        {
            "key": "partial",
            "label": "Parcial",
            "description": "Fornecedor salvou parte das respostas.",
        },
        {
            "key": "submitted",
            "label": "Enviado",
            "description": "Fornecedor enviou a cotacao.",
        },
    ],
    "ordem_compra": [
        {
            "key": "draft",
            "label": "Rascunho",
            "description": "Pedido gerado, ainda editavel.",
        },
        {
            "key": "sent",
            "label": "Enviado",
            "description": "Pedido enviado ao fornecedor.",
        },
        {
            "key": "confirmed",
            "label": "Confirmado",
            "description": "Fornecedor confirmou o pedido.",
        },
        {
            "key": "delivered",
            "label": "Entregue",
            "description": "Pedido entregue.",
        },
        {
            "key": "cancelled",
            "label": "Cancelado",
            "description": "Pedido cancelado.",
        },
    ],
}


WINNER_REASON_LABELS: Dict[str, str] = {
    "lowest_price": "Menor preco",
    "preferred_supplier": "Fornecedor preferencial",
    "best_delivery": "Melhor prazo de entrega",
    "negotiated": "Condicao negociada",
    "manual": "Selecao manual",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "quote_created": "Cotacao criada com sucesso.",
        "quote_opened": "Cotacao aberta para respostas.",
        "quote_closed": "Cotacao encerrada.",
        "quote_cancelled": "Cotacao cancelada.",
        "response_saved": "Resposta salva com sucesso.",
        "quote_submitted": "Cotacao enviada com sucesso!",
        "winner_saved": "Vencedor definido com sucesso.",
        "winners_auto_selected": "Selecao automatica concluida.",
        "purchase_orders_generated": "Pedidos de compra gerados com sucesso.",
        "purchase_orders_partially_generated": "Alguns pedidos de compra nao puderam ser gerados.",
        "order_saved": "Pedido de compra salvo com sucesso.",
    },
    "error": {
        "action_invalid": "Acao invalida para esta operacao.",
        "action_not_allowed_for_status": "Esta acao nao e permitida para o status atual.",
        "already_decided": "Este item ja teve o vencedor definido por outra pessoa. Atualize a tela.",
        "charges_invalid": "Impostos e frete devem ser valores nao negativos.",
        "data_integrity_violation": "Os dados da cotacao estao inconsistentes.",
        "deadline_invalid": "Prazo da cotacao invalido.",
        "delivery_days_invalid": "Prazo de entrega invalido.",
        "invalid_selection": "O fornecedor escolhido nao faz parte do empate deste item.",
        "item_not_found": "Item nao encontrado.",
        "missing_response_data": "Resposta vencedora nao encontrada para um ou mais itens.",
        "no_changes": "Nenhuma alteracao informada.",
        "no_response_found": "O fornecedor nao respondeu a este item.",
        "no_tie_for_item": "Este item nao possui empate de menor preco.",
        "no_winner_items": "Nenhum item com vencedor selecionado encontrado.",
        "not_found": "Registro nao encontrado.",
        "po_generation_failed": "Nenhum pedido foi criado. Verifique os dados.",
        "po_group_failed": "Falha ao gerar o pedido deste fornecedor. O pedido foi desfeito.",
        "po_generation_in_progress": "A geracao de pedidos para esta cotacao ja esta em andamento.",
        "price_invalid": "Preco invalido.",
        "pricing_tiers_invalid": "Faixas de preco invalidas.",
        "product_name_required": "Nome do produto obrigatorio.",
        "product_not_found": "Produto nao encontrado.",
        "purchase_order_item_not_found": "Item do pedido nao encontrado.",
        "purchase_order_not_found": "Pedido de compra nao encontrado.",
        "purchase_order_status_changed": "O status do pedido foi alterado por outra pessoa. Atualize a tela.",
        "purchase_orders_already_generated": "Os pedidos desta cotacao ja foram gerados.",
        "quantity_invalid": "Quantidade invalida.",
        "quote_closed_for_responses": "Cotacao nao aceita respostas neste status.",
        "quote_deadline_passed": "O prazo desta cotacao expirou.",
        "quote_not_found": "Cotacao nao encontrada.",
        "quote_status_changed": "O status da cotacao foi alterado por outra pessoa. Atualize a tela.",
        "quote_supplier_not_found": "Convite de fornecedor nao encontrado.",
        "status_invalid": "Status informado e invalido para esta etapa.",
        "supplier_not_found": "Fornecedor nao encontrado.",
        "supplier_name_required": "Nome do fornecedor obrigatorio.",
        "tenant_required": "Workspace obrigatorio para esta operacao.",
        "title_required": "Titulo obrigatorio.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
        "unresolved_ties": "Existem itens empatados sem vencedor definido.",
        "winner_price_missing": "A resposta vencedora nao possui preco.",
        "winner_reason_invalid": "Motivo de escolha do vencedor invalido.",
    },
    "generation": {
        "quote_without_items": "Cotacao nao possui itens.",
        "no_winners": "Nenhum vencedor foi selecionado.",
        "partial_winners": "{items_with_winners} de {total_items} itens tem vencedores. Os pedidos serao gerados apenas para estes itens.",
        "all_winners": "Todos os {total_items} itens tem vencedores selecionados.",
    },
}


def status_label(group: str, key: str | None) -> str:
    for item in STATUS_GROUPS.get(group, []):
        if item["key"] == key:
            return item["label"]
    return str(key or "")


def winner_reason_label(reason: str | None) -> str:
    normalized = str(reason or "").strip()
    return WINNER_REASON_LABELS.get(normalized, normalized)


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)

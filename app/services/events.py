from __future__ import annotations

from datetime import datetime
from typing import Any

from app.core.ids import utcnow
from app.domain.delivery import Delivery


def delivery_event_payload(
    delivery: Delivery,
    *,
    previous: Delivery | None = None,
    updated_at: datetime | None = None,
) -> dict[str, Any]:
    """
    `dados` block for delivery events. The courier comes from `previous`
    when the transition cleared it, so delivered / cancelled / problem
    events still say who had the stop.
    """
    courier_id = delivery.courier_id
    courier_name = delivery.courier_name
    if courier_id is None and previous is not None:
        courier_id = previous.courier_id or previous.held_by_courier_id
        courier_name = previous.courier_name or previous.held_by_courier_name
    if courier_id is None:
        courier_id = delivery.held_by_courier_id
        courier_name = delivery.held_by_courier_name

    return {
        "entregaId": delivery.id,
        "numeroPedido": delivery.order_number,
        "status": delivery.status.value,
        "nomeCliente": delivery.customer_name,
        "endereco": delivery.address.one_line(),
        "cidade": delivery.address.city,
        "cep": delivery.address.zip,
        "motoristaId": courier_id,
        "motoristaNome": courier_name,
        "dataAtualizacao": (updated_at or utcnow()).isoformat(),
        "itens": [
            {"nome": i.name, "codigo": i.code, "quantidade": i.quantity, "valorUnitario": i.unit_price}
            for i in delivery.items
        ],
    }


def sample_delivery_payload() -> dict[str, Any]:
    # used by the subscription test-send
    return {
        "entregaId": "dlv_teste",
        "numeroPedido": "PED-TESTE",
        "status": "in_transit",
        "nomeCliente": "Cliente Teste",
        "endereco": "Rua Teste, 123",
        "cidade": "Cidade Teste",
        "cep": "00000-000",
        "motoristaId": None,
        "motoristaNome": None,
        "dataAtualizacao": utcnow().isoformat(),
        "itens": [],
    }

import asyncio
from decimal import Decimal

import pytest

from loyalty_pos_server.errors import PreconditionError, SaleBatchFailed, TransportError, ValidationError
from loyalty_pos_server.models import CustomerContext, LineItem, LoyaltyAction
from loyalty_pos_server.orchestrator import SubmissionOrchestrator

from conftest import CUSTOMER_PHONE, OPERATOR_PHONE


@pytest.fixture
def submit(fake_api, customer, business, operator):
    orchestrator = SubmissionOrchestrator(fake_api)

    def run(items, redeem=False, context=None, **kwargs):
        return asyncio.run(
            orchestrator.submit(items, context or customer, business, operator, redeem, **kwargs)
        )

    return run


def test_loyalty_only_cart_skips_sale_batch(fake_api, customer, submit):
    result = submit([LineItem.loyalty("Café gratis", 1, LoyaltyAction.ACCUMULATE)], redeem=True)

    assert fake_api.called("submit_sale_batch") == []
    assert len(fake_api.called("accumulate")) == 1
    assert result.totals.sale_subtotal == Decimal("0.00")
    assert result.totals.redemption_applied == Decimal("0.00")
    assert not result.sale_submitted
    assert customer.balance == Decimal("30.00")


def test_sale_only_cart_sends_no_loyalty_requests(fake_api, customer, submit):
    result = submit([LineItem.sale("Café", "50", quantity="2")], redeem=True)

    assert len(fake_api.called("submit_sale_batch")) == 1
    assert fake_api.called("accumulate") == fake_api.called("redeem") == []
    assert result.loyalty_outcomes == []
    assert result.totals.amount_due == Decimal("70.00")
    assert customer.balance == Decimal("0.00")


def test_sale_batch_payload(fake_api, submit):
    submit([LineItem.sale("Café", "35.5", note="Sin azúcar"), LineItem.sale("Pan", "12", quantity="2")], redeem=True)

    payload = fake_api.called("submit_sale_batch")[0].to_wire()
    assert payload["TelefonoCliente"] == CUSTOMER_PHONE
    assert payload["NegocioId"] == 7
    assert payload["CreadoPor"] == OPERATOR_PHONE
    assert payload["Ventas"] == [
        {
            "Articulo": "Café",
            "Descripcion": "Sin azúcar",
            "Monto": 35.5,
            "Cantidad": 1.0,
            "PuntosAplicados": True,
            "SaldoAntes": 30.0,
        },
        {
            "Articulo": "Pan",
            "Descripcion": None,
            "Monto": 12.0,
            "Cantidad": 2.0,
            "PuntosAplicados": True,
            "SaldoAntes": 30.0,
        },
    ]


def test_loyalty_failure_does_not_fail_the_sale(fake_api, customer, submit):
    fake_api.fail["redeem"] = TransportError("Network Error")
    items = [LineItem.sale("Café", "40.00"), LineItem.loyalty("Café gratis", 1, LoyaltyAction.REDEEM)]

    result = submit(items, redeem=True)

    assert result.sale_submitted
    assert len(result.loyalty_failures) == 1
    assert result.loyalty_failures[0].error == "Network Error"
    assert result.receipt.lines[1].label == "Café gratis (canjear)"
    assert result.totals.sale_subtotal == Decimal("40.00")
    assert result.totals.redemption_applied == Decimal("30.00")
    assert customer.balance == Decimal("0.00")


def test_loyalty_rejection_is_captured(fake_api, submit):
    fake_api.fail["accumulate"] = "Promoción inactiva"
    items = [
        LineItem.loyalty("Café gratis", 1, LoyaltyAction.ACCUMULATE),
        LineItem.loyalty("Pan dulce", 2, LoyaltyAction.REDEEM),
    ]

    result = submit(items)

    assert [outcome.ok for outcome in result.loyalty_outcomes] == [False, True]
    assert result.loyalty_outcomes[0].error == "Promoción inactiva"
    assert result.loyalty_outcomes[1].progress.percent == Decimal("40")


def test_empty_cart_makes_no_requests(fake_api, submit):
    with pytest.raises(PreconditionError):
        submit([])
    assert fake_api.calls == []


@pytest.mark.parametrize(
    "context",
    [
        CustomerContext(phone=CUSTOMER_PHONE),
        CustomerContext(phone="123"),
    ],
)
def test_unvalidated_customer_makes_no_requests(fake_api, submit, context):
    with pytest.raises(PreconditionError):
        submit([LineItem.sale("Café", "10")], context=context)
    assert fake_api.calls == []


def test_non_positive_sale_total_is_rejected(fake_api, submit):
    with pytest.raises(ValidationError):
        submit([LineItem.sale("Café", "0")])
    assert fake_api.calls == []


def test_sale_rejection_aborts_everything(fake_api, customer, submit):
    fake_api.fail["submit_sale_batch"] = "Saldo insuficiente"
    items = [LineItem.sale("Café", "40"), LineItem.loyalty("Café gratis", 1, LoyaltyAction.ACCUMULATE)]

    with pytest.raises(SaleBatchFailed) as excinfo:
        submit(items, redeem=True)

    assert excinfo.value.server_message == "Saldo insuficiente"
    assert fake_api.called("accumulate") == []
    assert customer.balance == Decimal("30.00")


def test_sale_transport_error_propagates(fake_api, submit):
    fake_api.fail["submit_sale_batch"] = TransportError("Network Error")
    with pytest.raises(TransportError):
        submit([LineItem.sale("Café", "40")])


def test_outcomes_follow_cart_order_not_completion_order(fake_api, submit):
    fake_api.delays[1] = 0.05
    items = [
        LineItem.loyalty("Café gratis", 1, LoyaltyAction.ACCUMULATE),
        LineItem.loyalty("Pan dulce", 2, LoyaltyAction.REDEEM),
    ]

    result = submit(items)

    assert fake_api.completed == [2, 1]
    assert [outcome.item.id for outcome in result.loyalty_outcomes] == [item.id for item in items]
    assert [line.label for line in result.receipt.lines] == ["Café gratis (acumular)", "Pan dulce (canjear)"]
    assert all(outcome.ok for outcome in result.loyalty_outcomes)


def test_loyalty_request_fields(fake_api, submit):
    submit([LineItem.loyalty("Café gratis", 1, LoyaltyAction.ACCUMULATE, unit_amount="20", quantity="2", note="x")])

    request = fake_api.called("accumulate")[0].to_wire()
    assert request == {
        "usuario": "Ana",
        "usuarioOperacion": OPERATOR_PHONE,
        "telefonoCliente": CUSTOMER_PHONE,
        "idProductoCustom": 1,
        "cantidad": 2.0,
        "monto": 20.0,
        "descripcion": "x",
        "idNegocio": 7,
    }


def test_stale_submission_does_not_touch_the_customer(fake_api, customer, submit):
    result = submit([LineItem.sale("Café", "50")], redeem=True, is_current=lambda: False)

    assert result.totals.projected_balance == Decimal("0.00")
    assert customer.balance == Decimal("30.00")


def test_receipt_contents(submit):
    items = [LineItem.sale("Café", "50"), LineItem.loyalty("Café gratis", 1, LoyaltyAction.ACCUMULATE, "5")]
    receipt = submit(items, redeem=True).receipt

    assert receipt.business_name == "Café Central"
    assert receipt.customer_name == "Luis"
    assert receipt.combined_total == Decimal("55.00")
    assert receipt.amount_charged == Decimal("20.00")
    assert receipt.balance_before == Decimal("30.00")
    assert receipt.balance_after == Decimal("0.00")


def test_sale_item_is_never_sent_as_a_loyalty_action(fake_api, customer, business, operator):
    outcome = asyncio.run(
        SubmissionOrchestrator(fake_api)._submit_loyalty_action(LineItem.sale("Café", "10"), customer, business, operator)
    )

    assert not outcome.ok
    assert outcome.error == "Not a loyalty item"
    assert fake_api.calls == []

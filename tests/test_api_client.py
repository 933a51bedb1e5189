import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from loyalty_pos_server.api_client import LoyaltyApiClient
from loyalty_pos_server.errors import TransportError
from loyalty_pos_server.models import (
    AccrualType,
    AuthCredentials,
    LoyaltyActionRequest,
    OperatorIdentity,
    SaleBatchItem,
    SaleBatchPayload,
)

from conftest import CUSTOMER_PHONE, OPERATOR_PHONE


def make_client(auth_manager, handler):
    return LoyaltyApiClient(auth_manager, base_url="http://backend/api", transport=httpx.MockTransport(handler))


def call(client, method, *args):
    async def run():
        try:
            return await getattr(client, method)(*args)
        finally:
            await client.close()

    return asyncio.run(run())


def test_login_maps_operator(auth_manager):
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"token": "abc", "role": "Admin", "telefono": OPERATOR_PHONE, "user": {"Nombre": "Ana"}},
        )

    response = call(make_client(auth_manager, handler), "login", AuthCredentials(phone=OPERATOR_PHONE, password="pw"))

    assert seen == {"path": "/api/Auth/login", "body": {"numeroTelefono": OPERATOR_PHONE, "password": "pw"}}
    assert response.success
    assert response.token == "abc"
    assert response.operator == OperatorIdentity(phone=OPERATOR_PHONE, name="Ana", role="Admin")


def test_login_rejected(auth_manager):
    def handler(request):
        return httpx.Response(401, json={"message": "Credenciales inválidas"})

    response = call(make_client(auth_manager, handler), "login", AuthCredentials(phone=OPERATOR_PHONE))

    assert not response.success
    assert response.status == 401
    assert response.message == "Credenciales inválidas"
    assert response.operator is None


def test_requests_carry_bearer_token(auth_manager):
    auth_manager.save_session("tok", OperatorIdentity(phone=OPERATOR_PHONE))
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"status": 200, "data": {"nombre": "Luis", "puntosAcumulados": 12.345}})

    response = call(make_client(auth_manager, handler), "get_customer_points", CUSTOMER_PHONE, 7)

    assert seen["auth"] == "Bearer tok"
    assert seen["params"] == {"phoneNumber": CUSTOMER_PHONE, "idNegocio": "7"}
    assert response.success
    assert response.customer.name == "Luis"
    assert response.customer.balance == Decimal("12.35")


def test_customer_without_data_is_a_rejection(auth_manager):
    def handler(request):
        return httpx.Response(404, json={"status": 404, "success": False, "message": "No existe"})

    response = call(make_client(auth_manager, handler), "get_customer_points", CUSTOMER_PHONE, 7)

    assert not response.success
    assert response.status == 404
    assert response.message == "No existe"


def test_business_config_accepts_pascal_case(auth_manager):
    def handler(request):
        return httpx.Response(
            200,
            json={
                "data": {
                    "IdNegocio": 7,
                    "Nombre": "Café Central",
                    "Configuracion": {"PermitirConfiguracionPersonalizada": True, "Activo": True},
                }
            },
        )

    response = call(make_client(auth_manager, handler), "get_business_config", OPERATOR_PHONE)

    assert response.success
    assert response.business.id == 7
    assert response.business.name == "Café Central"
    assert response.business.allows_custom_loyalty


def test_offers_are_mapped(auth_manager):
    def handler(request):
        return httpx.Response(
            200,
            json={
                "data": [
                    {"idProductoCustom": 1, "nombreProducto": "Café gratis", "tipoAcumulacion": "Monto", "meta": 500, "estado": True},
                    {"idProductoCustom": 2, "nombreProducto": "Raro", "tipoAcumulacion": "Otro", "estado": False},
                ]
            },
        )

    response = call(make_client(auth_manager, handler), "list_offers", 7)

    assert [offer.id for offer in response.offers] == [1, 2]
    assert response.offers[0].accrual_type is AccrualType.BY_AMOUNT
    assert response.offers[0].target == Decimal("500")
    assert response.offers[1].accrual_type is AccrualType.PER_PURCHASE


def test_sale_batch_wire_format(auth_manager):
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"message": "Ventas registradas", "data": {"ids": [10, 11]}})

    payload = SaleBatchPayload(
        customer_phone=CUSTOMER_PHONE,
        business_id=7,
        created_by=OPERATOR_PHONE,
        items=[
            SaleBatchItem(article="Café", amount=35.5, quantity=1, points_applied=False, balance_before=30),
        ],
    )
    response = call(make_client(auth_manager, handler), "submit_sale_batch", payload)

    assert seen["path"] == "/api/Sell/InsertManySellsByUserPhoneNumber"
    assert seen["body"]["Ventas"][0]["Articulo"] == "Café"
    assert response.success
    assert response.status == 201
    assert response.ids == ["10", "11"]


@pytest.mark.parametrize(
    "method, path",
    [
        ("accumulate", "/api/ProductosCustom/AcumularProgresoCustom"),
        ("redeem", "/api/ProductosCustom/CanjearProgresoCustom"),
    ],
)
def test_loyalty_actions(auth_manager, method, path):
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        return httpx.Response(200, json={"data": {"porcentaje": 60, "estado": "Activo", "idProductoCustom": 1}})

    request = LoyaltyActionRequest(user="Ana", customer_phone=CUSTOMER_PHONE, offer_id=1, business_id=7)
    response = call(make_client(auth_manager, handler), method, request)

    assert seen["path"] == path
    assert response.success
    assert response.message == "Operation finished"
    assert response.progress.percent == Decimal("60")


def test_network_failure_raises_transport_error(auth_manager):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as excinfo:
        call(make_client(auth_manager, handler), "list_offers", 7)
    assert str(excinfo.value) == "Network Error"


def test_unreadable_body_raises_transport_error(auth_manager):
    def handler(request):
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    with pytest.raises(TransportError) as excinfo:
        call(make_client(auth_manager, handler), "list_offers", 7)
    assert excinfo.value.status == 502

from decimal import Decimal

URL = "/api/v1/settings/margins"


def test_defaults_start_at_zero(client, admin_headers):
    resp = client.get(URL, headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["version"] == 0
    assert Decimal(body["default_margin_percentage"]) == 0


def test_update_bumps_version(client, admin_headers):
    resp = client.put(URL, json={"default_margin_percentage": "35", "clothing_product_fee": "6"}, headers=admin_headers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["version"] == 1
    assert Decimal(body["default_margin_percentage"]) == Decimal("35")
    assert Decimal(body["clothing_product_fee"]) == Decimal("6")

    again = client.get(URL, headers=admin_headers).json()
    assert again["version"] == 1
    assert Decimal(again["default_shipping_margin_percentage"]) == 0


def test_out_of_range(client, admin_headers):
    resp = client.put(URL, json={"default_sample_margin_percentage": "501"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "margin_out_of_range"

    resp = client.put(URL, json={"clothing_product_fee": "-1"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "fee_out_of_range"
    assert client.get(URL, headers=admin_headers).json()["version"] == 0


def test_unknown_field_rejected(client, admin_headers):
    resp = client.put(URL, json={"vat": "20"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "request_validation_error"


def test_admin_only(client, manufacturer_headers, client_headers):
    assert client.get(URL, headers=client_headers).status_code == 403
    resp = client.put(URL, json={"default_margin_percentage": "10"}, headers=manufacturer_headers)
    assert resp.status_code == 403

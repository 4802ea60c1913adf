"""
Seller dashboard API tests.
"""

import pytest

from kantin.models import Product, Withdrawal
from kantin.models.ledger import TRANSACTION_VERIFIED
from kantin.services import catalog_service, ledger_service


def _record_sale(seller, amount):
    transaction = ledger_service.build_transaction(
        customer_name="Andi",
        lines=[{"product_id": 1, "product_name": "Nasi Goreng", "quantity": 1, "price": amount}],
        status=TRANSACTION_VERIFIED,
        seller_id=seller.id,
    )
    return ledger_service.create_transaction(transaction)


class TestSellerProducts:

    def test_create_product(self, client, db_session, seller, seller_headers):
        resp = client.post("/api/seller/products", headers=seller_headers, json={
            "name": "Mie Ayam",
            "price": 12000,
            "stock": "20",
        })

        assert resp.status_code == 201
        product = resp.json["product"]
        assert product["seller_id"] == seller.id
        assert product["stock"] == 20
        assert product["category"] == "Lainnya"
        assert product["is_active"] is True

    def test_create_requires_fields(self, client, db_session, seller_headers):
        resp = client.post("/api/seller/products", headers=seller_headers, json={"name": "Mie Ayam"})
        assert resp.status_code == 400

    def test_rejects_negative_and_fractional_values(self, client, db_session, seller_headers):
        negative = client.post("/api/seller/products", headers=seller_headers, json={
            "name": "Mie Ayam", "price": -1, "stock": 1,
        })
        fractional = client.post("/api/seller/products", headers=seller_headers, json={
            "name": "Mie Ayam", "price": 1500.5, "stock": 1,
        })

        assert negative.status_code == 400
        assert fractional.status_code == 400
        assert db_session.query(Product).count() == 0

    def test_rejects_unknown_fields(self, client, db_session, seller_headers):
        resp = client.post("/api/seller/products", headers=seller_headers, json={
            "name": "Mie Ayam", "price": 1000, "stock": 1, "seller_id": 99,
        })
        assert resp.status_code == 400

    def test_update_toggle_delete(self, client, db_session, seller_headers, nasi_goreng):
        resp = client.put(f"/api/seller/products/{nasi_goreng.id}", headers=seller_headers, json={"price": 16000})
        assert resp.json["product"]["price"] == 16000

        resp = client.post(f"/api/seller/products/{nasi_goreng.id}/toggle", headers=seller_headers)
        assert resp.json["product"]["is_active"] is False

        resp = client.delete(f"/api/seller/products/{nasi_goreng.id}", headers=seller_headers)
        assert resp.status_code == 200
        assert db_session.get(Product, nasi_goreng.id) is None

    @pytest.mark.parametrize("method, suffix, service_fn", [
        ("post", "/toggle", "toggle_active"),
        ("delete", "", "delete_product"),
    ])
    def test_unexpected_error_is_500(self, client, db_session, seller_headers, nasi_goreng, monkeypatch,
                                     method, suffix, service_fn):
        def boom(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(catalog_service, service_fn, boom)
        resp = getattr(client, method)(f"/api/seller/products/{nasi_goreng.id}{suffix}", headers=seller_headers)

        assert resp.status_code == 500
        assert resp.json["error"] == "Internal server error"

    def test_cannot_touch_other_sellers_product(self, client, db_session, seller_headers, es_teh):
        resp = client.put(f"/api/seller/products/{es_teh.id}", headers=seller_headers, json={"price": 1})
        assert resp.status_code == 403

        resp = client.delete(f"/api/seller/products/{es_teh.id}", headers=seller_headers)
        assert resp.status_code == 403

    def test_lists_only_own_products(self, client, seller_headers, nasi_goreng, es_teh):
        resp = client.get("/api/seller/products", headers=seller_headers)
        assert [p["id"] for p in resp.json["items"]] == [nasi_goreng.id]


class TestSellerBalance:

    def test_balance_and_withdrawal(self, client, db_session, seller, seller_headers):
        _record_sale(seller, 100_000)

        resp = client.post("/api/seller/withdrawals", headers=seller_headers, json={
            "amount": 50_000,
            "bank_name": "BCA",
            "account_number": "1234567890",
            "account_name": "Sri",
        })
        assert resp.status_code == 201
        assert resp.json["withdrawal"]["fee_amount"] == 4_000
        assert resp.json["withdrawal"]["net_amount"] == 46_000

        balance = client.get("/api/seller/balance", headers=seller_headers).json
        assert balance["balance"]["available_balance"] == 50_000
        assert balance["balance"]["pending_hold"] == 50_000
        assert balance["min_withdrawal"] == 10_000

    def test_withdrawal_over_balance_rejected(self, client, db_session, seller, seller_headers):
        _record_sale(seller, 20_000)

        resp = client.post("/api/seller/withdrawals", headers=seller_headers, json={
            "amount": 20_001,
            "bank_name": "BCA",
            "account_number": "1234567890",
            "account_name": "Sri",
        })

        assert resp.status_code == 400
        assert resp.json["details"]["available_balance"] == 20_000
        assert db_session.query(Withdrawal).count() == 0

    def test_withdrawal_below_minimum_rejected(self, client, db_session, seller, seller_headers):
        _record_sale(seller, 20_000)

        resp = client.post("/api/seller/withdrawals", headers=seller_headers, json={
            "amount": 9_999,
            "bank_name": "BCA",
            "account_number": "1234567890",
            "account_name": "Sri",
        })

        assert resp.status_code == 400
        assert resp.json["details"]["minimum"] == 10_000

    def test_transactions_and_stats(self, client, db_session, seller, other_seller, seller_headers):
        _record_sale(seller, 15_000)
        _record_sale(other_seller, 99_000)

        items = client.get("/api/seller/transactions", headers=seller_headers).json["items"]
        stats = client.get("/api/seller/stats", headers=seller_headers).json["stats"]

        assert [t["total_amount"] for t in items] == [15_000]
        assert stats["total_revenue"] == 15_000

"""
Balance and withdrawal tests.

Verifies:
- Balance is derived from history (verified sales minus completed and pending withdrawals)
- Fee is 8% rounded half-up and fee + net == amount
- Minimum withdrawal boundary is inclusive
- Rejected requests write nothing
"""

from types import SimpleNamespace

import pytest

from kantin.models import Withdrawal
from kantin.models.ledger import (
    TRANSACTION_VERIFIED,
    TRANSACTION_FAILED,
    WITHDRAWAL_PENDING,
    WITHDRAWAL_COMPLETED,
    WITHDRAWAL_REJECTED,
)
from kantin.services import balance_service, ledger_service
from kantin.services.balance_service import (
    MIN_WITHDRAWAL,
    BelowMinimumError,
    InsufficientBalanceError,
    WithdrawalError,
    WithdrawalStateError,
)


def _txn(seller_id, amount, status=TRANSACTION_VERIFIED):
    return SimpleNamespace(seller_id=seller_id, total_amount=amount, status=status)


def _wd(seller_id, amount, status):
    return SimpleNamespace(seller_id=seller_id, amount=amount, status=status)


def _record_sale(seller, amount):
    transaction = ledger_service.build_transaction(
        customer_name="Andi",
        lines=[{"product_id": 1, "product_name": "Nasi Goreng", "quantity": 1, "price": amount}],
        status=TRANSACTION_VERIFIED,
        seller_id=seller.id,
    )
    return ledger_service.create_transaction(transaction)


def _request(seller, amount):
    return balance_service.request_withdrawal(
        seller.id,
        amount,
        bank_name="BCA",
        account_number="1234567890",
        account_name=seller.full_name,
    )


# =============================================================================
# PURE COMPUTATION
# =============================================================================


class TestComputeBalance:

    def test_completed_and_pending_withdrawals_both_reduce_available(self):
        balance = balance_service.compute_balance(
            7,
            [_txn(7, 60_000), _txn(7, 40_000)],
            [_wd(7, 50_000, WITHDRAWAL_COMPLETED), _wd(7, 20_000, WITHDRAWAL_PENDING)],
        )
        assert balance.total_sales == 100_000
        assert balance.total_withdrawn == 50_000
        assert balance.pending_hold == 20_000
        assert balance.available_balance == 30_000

    def test_ignores_unverified_sales_rejected_withdrawals_and_other_sellers(self):
        balance = balance_service.compute_balance(
            7,
            [_txn(7, 10_000), _txn(7, 99_000, TRANSACTION_FAILED), _txn(8, 50_000)],
            [_wd(7, 5_000, WITHDRAWAL_REJECTED), _wd(8, 10_000, WITHDRAWAL_PENDING)],
        )
        assert balance.available_balance == 10_000
        assert balance.total_withdrawn == 0
        assert balance.pending_hold == 0

    def test_no_history_is_zero(self):
        balance = balance_service.compute_balance(7, [], [])
        assert balance.to_dict() == {
            "total_sales": 0,
            "total_withdrawn": 0,
            "pending_hold": 0,
            "available_balance": 0,
        }


class TestFee:

    @pytest.mark.parametrize(
        "amount,fee",
        [
            (50_000, 4_000),
            (10_000, 800),
            (10_006, 800),     # 800.48 rounds down
            (10_007, 801),     # 800.56 rounds up
            (10_025, 802),     # exactly 802.00
            (10_019, 802),     # 801.52
            (18_750, 1_500),
            (10_031, 802),     # 802.48
        ],
    )
    def test_fee_rounds_half_up(self, amount, fee):
        assert balance_service.calculate_fee(amount) == fee

    @pytest.mark.parametrize("amount", [10_000, 10_007, 12_345, 99_999, 1_000_000])
    def test_fee_plus_net_equals_amount(self, amount):
        fee, net = balance_service.split_withdrawal(amount)
        assert fee + net == amount


class TestValidateAmount:

    def test_minimum_is_inclusive(self):
        balance_service.validate_withdrawal_amount(MIN_WITHDRAWAL, 50_000)

    def test_below_minimum_rejected(self):
        with pytest.raises(BelowMinimumError):
            balance_service.validate_withdrawal_amount(MIN_WITHDRAWAL - 1, 50_000)

    def test_above_available_rejected(self):
        with pytest.raises(InsufficientBalanceError):
            balance_service.validate_withdrawal_amount(30_001, 30_000)

    def test_exact_available_allowed(self):
        balance_service.validate_withdrawal_amount(30_000, 30_000)

    def test_non_integer_rejected(self):
        with pytest.raises(WithdrawalError):
            balance_service.validate_withdrawal_amount(10_000.5, 50_000)


# =============================================================================
# PERSISTED LIFECYCLE
# =============================================================================


class TestWithdrawalLifecycle:

    def test_balance_after_completed_and_pending(self, db_session, seller, admin):
        _record_sale(seller, 100_000)

        first = _request(seller, 50_000)
        assert first.fee_amount == 4_000
        assert first.net_amount == 46_000
        balance_service.approve_withdrawal(
            first.id,
            transfer_proof_url="https://example.test/transfer.png",
            processed_by_user_id=admin.id,
        )
        _request(seller, 20_000)

        balance = balance_service.get_seller_balance(seller.id)
        assert balance.total_withdrawn == 50_000
        assert balance.pending_hold == 20_000
        assert balance.available_balance == 30_000

    def test_minimum_boundary(self, db_session, seller):
        _record_sale(seller, 50_000)

        with pytest.raises(BelowMinimumError):
            _request(seller, 9_999)
        withdrawal = _request(seller, 10_000)

        assert withdrawal.status == WITHDRAWAL_PENDING
        assert withdrawal.fee_amount == 800
        assert withdrawal.net_amount == 9_200

    def test_insufficient_balance_writes_nothing(self, db_session, seller):
        with pytest.raises(InsufficientBalanceError):
            _request(seller, 10_000)

        assert db_session.query(Withdrawal).count() == 0
        assert balance_service.get_seller_balance(seller.id).available_balance == 0

    def test_bank_details_required(self, db_session, seller):
        _record_sale(seller, 50_000)
        with pytest.raises(WithdrawalError) as exc:
            balance_service.request_withdrawal(
                seller.id, 10_000, bank_name="BCA", account_number="", account_name=" "
            )
        assert set(exc.value.details["missing"]) == {"account_number", "account_name"}
        assert db_session.query(Withdrawal).count() == 0

    def test_approve_requires_transfer_proof(self, db_session, seller):
        _record_sale(seller, 50_000)
        withdrawal = _request(seller, 20_000)

        with pytest.raises(WithdrawalError):
            balance_service.approve_withdrawal(withdrawal.id, transfer_proof_url="")
        assert ledger_service.get_withdrawal(withdrawal.id).status == WITHDRAWAL_PENDING

    def test_reject_releases_hold(self, db_session, seller, admin):
        _record_sale(seller, 50_000)
        withdrawal = _request(seller, 20_000)
        assert balance_service.get_seller_balance(seller.id).available_balance == 30_000

        rejected = balance_service.reject_withdrawal(
            withdrawal.id, processed_by_user_id=admin.id, admin_notes="Rekening salah"
        )

        assert rejected.status == WITHDRAWAL_REJECTED
        assert rejected.processed_at is not None
        assert balance_service.get_seller_balance(seller.id).available_balance == 50_000

    def test_processed_withdrawal_cannot_be_processed_again(self, db_session, seller):
        _record_sale(seller, 50_000)
        withdrawal = _request(seller, 20_000)
        balance_service.reject_withdrawal(withdrawal.id)

        with pytest.raises(WithdrawalStateError):
            balance_service.approve_withdrawal(withdrawal.id, transfer_proof_url="https://example.test/t.png")

    def test_seller_stats(self, db_session, seller, nasi_goreng):
        _record_sale(seller, 30_000)
        _request(seller, 10_000)

        stats = balance_service.get_seller_stats(seller.id)

        assert stats["total_revenue"] == 30_000
        assert stats["total_transactions"] == 1
        assert stats["total_products"] == 1
        assert stats["pending_withdrawals"] == 10_000
        assert stats["available_balance"] == 20_000

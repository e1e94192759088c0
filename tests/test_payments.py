"""Tests for payment callback reconciliation."""

import logging
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import success_callback
from vendpay import repositories
from vendpay.enums import CallbackStatus, PaymentStatus
from vendpay.errors import InvalidCallbackError, PaymentCallbackInvalid
from vendpay.payments import PaymentCallback, PaymentReconciler
from vendpay.signing import Md5SignatureVerifier, md5_sign


class TestSuccessCallback:
    def test_marks_order_paid(self, reconciler, orders, new_order):
        order = new_order()
        paid_at = datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)

        ack = reconciler.handle_callback(success_callback(order, "TX-100", paid_at))

        assert ack.success is True
        assert ack.applied is True
        paid = orders.get_order(order.id)
        assert paid.payment_status == PaymentStatus.PAID
        assert paid.channel_order_no == "TX-100"
        assert paid.payment_time == paid_at
        assert paid.version == order.version + 1

    def test_timezone_aware_paid_at_stored_as_utc(self, reconciler, orders, new_order):
        order = new_order()
        paid_at = datetime(2026, 10, 1, 20, 0, 0, tzinfo=timezone(timedelta(hours=8)))

        reconciler.handle_callback(success_callback(order, paid_at=paid_at))

        stored = orders.get_order(order.id).payment_time
        assert stored == datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert stored.utcoffset() == timedelta(0)

    def test_paid_at_without_offset_read_as_utc(self, reconciler, orders, new_order):
        order = new_order()

        reconciler.handle_callback(success_callback(order, paid_at=datetime(2026, 10, 1, 9, 30, 0)))

        assert orders.get_order(order.id).payment_time == datetime(2026, 10, 1, 9, 30, 0, tzinfo=timezone.utc)

    def test_duplicate_callback_is_noop(self, reconciler, orders, new_order):
        order = new_order()
        first_paid_at = datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)
        reconciler.handle_callback(success_callback(order, "TX-1", first_paid_at))
        after_first = orders.get_order(order.id)

        ack = reconciler.handle_callback(success_callback(order, "TX-2", first_paid_at + timedelta(minutes=5)))

        assert ack.success is True
        assert ack.applied is False
        after_second = orders.get_order(order.id)
        assert after_second.payment_status == PaymentStatus.PAID
        assert after_second.channel_order_no == "TX-1"
        assert after_second.payment_time == first_paid_at
        assert after_second.version == after_first.version

    def test_callback_after_refund_does_not_reopen(self, reconciler, orders, paid_order, seed):
        orders.refund(paid_order.id, "customer request", seed.owner_id)

        ack = reconciler.handle_callback(success_callback(paid_order, "TX-late"))

        assert ack.applied is False
        assert orders.get_order(paid_order.id).payment_status == PaymentStatus.REFUNDED

    def test_amount_mismatch_refused_but_acknowledged(self, reconciler, orders, new_order, caplog):
        order = new_order("12.50")
        callback = success_callback(order)
        callback.amount = Decimal("0.01")

        with caplog.at_level(logging.ERROR, logger="vendpay"):
            ack = reconciler.handle_callback(callback)

        assert ack.success is True
        assert ack.applied is False
        assert orders.get_order(order.id).payment_status == PaymentStatus.WAIT_PAY
        assert "could not be applied" in caplog.text

    def test_amount_with_different_scale_matches(self, reconciler, orders, new_order):
        order = new_order("12.50")
        callback = success_callback(order)
        callback.amount = Decimal("12.5")

        assert reconciler.handle_callback(callback).applied is True


class TestFailureCallbacks:
    @pytest.mark.parametrize("status", [CallbackStatus.FAILURE, CallbackStatus.CANCEL, CallbackStatus.TIMEOUT])
    def test_invalidates_wait_pay_order(self, reconciler, orders, new_order, status):
        order = new_order()
        callback = success_callback(order)
        callback.status = status

        ack = reconciler.handle_callback(callback)

        assert ack.applied is True
        invalid = orders.get_order(order.id)
        assert invalid.payment_status == PaymentStatus.INVALID
        assert invalid.payment_time is None

    def test_invalid_is_terminal(self, reconciler, orders, new_order):
        order = new_order()
        failure = success_callback(order)
        failure.status = CallbackStatus.FAILURE
        reconciler.handle_callback(failure)

        ack = reconciler.handle_callback(success_callback(order))

        assert ack.applied is False
        assert orders.get_order(order.id).payment_status == PaymentStatus.INVALID

    def test_failure_after_paid_is_ignored(self, reconciler, orders, paid_order):
        failure = success_callback(paid_order)
        failure.status = CallbackStatus.TIMEOUT

        assert reconciler.handle_callback(failure).applied is False
        assert orders.get_order(paid_order.id).payment_status == PaymentStatus.PAID

    def test_exception_status_leaves_order_waiting(self, reconciler, orders, new_order):
        order = new_order()
        callback = success_callback(order)
        callback.status = CallbackStatus.EXCEPTION

        ack = reconciler.handle_callback(callback)

        assert ack.success is True
        assert ack.applied is False
        assert orders.get_order(order.id).payment_status == PaymentStatus.WAIT_PAY


class TestAcknowledgementBoundary:
    def test_unknown_order_acknowledged(self, reconciler, seed, caplog):
        callback = PaymentCallback(
            order_no="ORD-unknown",
            channel_order_no="TX-9",
            status=CallbackStatus.SUCCESS,
            signature="sig",
        )

        with caplog.at_level(logging.WARNING, logger="vendpay"):
            ack = reconciler.handle_callback(callback)

        assert ack.success is True
        assert ack.applied is False
        assert "unknown order" in caplog.text

    def test_internal_failure_still_acknowledged(self, reconciler, orders, new_order, monkeypatch, caplog):
        order = new_order()

        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(repositories, "transition_payment", broken)

        with caplog.at_level(logging.ERROR, logger="vendpay"):
            ack = reconciler.handle_callback(success_callback(order))

        assert ack.success is True
        assert ack.applied is False
        assert "disk full" in caplog.text
        assert orders.get_order(order.id).payment_status == PaymentStatus.WAIT_PAY

    @pytest.mark.parametrize("signature", [None, "", "   "])
    def test_missing_signature_rejected(self, reconciler, orders, new_order, signature):
        order = new_order()
        callback = success_callback(order)
        callback.signature = signature

        with pytest.raises(PaymentCallbackInvalid) as exc_info:
            reconciler.handle_callback(callback)

        assert isinstance(exc_info.value, InvalidCallbackError)
        assert orders.get_order(order.id).payment_status == PaymentStatus.WAIT_PAY


class TestSignatureVerification:
    def test_valid_signature_accepted(self, engine, orders, new_order):
        reconciler = PaymentReconciler(engine, verifier=Md5SignatureVerifier("secret"))
        order = new_order()
        raw = {
            "orderNo": order.order_no,
            "channelOrderNo": "TX-5",
            "amount": "12.50",
            "status": "Success",
        }
        callback = PaymentCallback(
            order_no=order.order_no,
            channel_order_no="TX-5",
            status=CallbackStatus.SUCCESS,
            signature=md5_sign(raw, "secret"),
            amount=Decimal("12.50"),
            raw=raw,
        )

        assert reconciler.handle_callback(callback).applied is True
        assert orders.get_order(order.id).payment_status == PaymentStatus.PAID

    def test_wrong_signature_rejected(self, engine, orders, new_order):
        reconciler = PaymentReconciler(engine, verifier=Md5SignatureVerifier("secret"))
        order = new_order()
        callback = success_callback(order)
        callback.signature = md5_sign(callback.sign_params(), "other-key")

        with pytest.raises(PaymentCallbackInvalid):
            reconciler.handle_callback(callback)
        assert orders.get_order(order.id).payment_status == PaymentStatus.WAIT_PAY


class TestConcurrentCallbacks:
    def test_only_one_duplicate_wins(self, engine, orders, new_order):
        order = new_order()
        reconciler = PaymentReconciler(engine, verifier=None)
        barrier = threading.Barrier(2)
        acks = {}

        def deliver(channel_order_no):
            callback = success_callback(order, channel_order_no)
            barrier.wait()
            acks[channel_order_no] = reconciler.handle_callback(callback)

        threads = [threading.Thread(target=deliver, args=(tx,)) for tx in ("TX-A", "TX-B")]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert all(ack.success for ack in acks.values())
        winners = [tx for tx, ack in acks.items() if ack.applied]
        assert len(winners) == 1

        final = orders.get_order(order.id)
        assert final.payment_status == PaymentStatus.PAID
        assert final.channel_order_no == winners[0]
        assert final.version == order.version + 1

"""Tests for capture reconciliation."""

from checkout.saga.reconciliation import CaptureReconciler, ReconcileResult
from checkout.services.port import OrderStatus


async def _pending_order(backend):
    receipt = await backend.create_order([42], 1999, None, "checkout-key")
    return receipt.order_id


class TestCaptureReconciler:
    async def test_success_order_reconciles(self, backend):
        order_id = await _pending_order(backend)
        backend.orders[order_id]["status"] = OrderStatus.SUCCESS

        assert await CaptureReconciler(backend).reconcile(order_id) == ReconcileResult.SUCCEEDED

    async def test_pending_order_is_unresolved(self, backend):
        order_id = await _pending_order(backend)
        assert await CaptureReconciler(backend).reconcile(order_id) == ReconcileResult.UNRESOLVED

    async def test_failed_order_is_unresolved(self, backend):
        order_id = await _pending_order(backend)
        backend.orders[order_id]["status"] = OrderStatus.FAILED
        assert await CaptureReconciler(backend).reconcile(order_id) == ReconcileResult.UNRESOLVED

    async def test_order_service_error_is_unresolved(self, backend):
        order_id = await _pending_order(backend)
        backend.fail("get_order")
        assert await CaptureReconciler(backend).reconcile(order_id) == ReconcileResult.UNRESOLVED

    async def test_only_reads_the_order(self, backend):
        order_id = await _pending_order(backend)
        backend.calls.clear()

        reconciler = CaptureReconciler(backend)
        await reconciler.reconcile(order_id)
        await reconciler.reconcile(order_id)

        assert [call["method"] for call in backend.calls] == ["get_order", "get_order"]


class TestPaymentStatusFallback:
    async def _timed_out_payment(self, backend, captured):
        order_id = await _pending_order(backend)
        payment = await backend.create_payment_order(1999, "INR", order_id, "Payment for order")
        backend.payments[payment.payment_record_id]["captured"] = captured
        return order_id, payment.payment_record_id

    async def test_captured_payment_reconciles_pending_order(self, backend):
        order_id, payment_record_id = await self._timed_out_payment(backend, captured=True)

        result = await CaptureReconciler(backend, backend).reconcile(order_id, payment_record_id)
        assert result == ReconcileResult.SUCCEEDED

    async def test_uncaptured_payment_is_unresolved(self, backend):
        order_id, payment_record_id = await self._timed_out_payment(backend, captured=False)

        result = await CaptureReconciler(backend, backend).reconcile(order_id, payment_record_id)
        assert result == ReconcileResult.UNRESOLVED

    async def test_paid_order_skips_payment_lookup(self, backend):
        order_id, payment_record_id = await self._timed_out_payment(backend, captured=True)
        backend.orders[order_id]["status"] = OrderStatus.SUCCESS
        backend.calls.clear()

        await CaptureReconciler(backend, backend).reconcile(order_id, payment_record_id)
        assert [call["method"] for call in backend.calls] == ["get_order"]

    async def test_payment_lookup_used_when_order_service_is_down(self, backend):
        order_id, payment_record_id = await self._timed_out_payment(backend, captured=True)
        backend.fail("get_order")

        result = await CaptureReconciler(backend, backend).reconcile(order_id, payment_record_id)
        assert result == ReconcileResult.SUCCEEDED

    async def test_payment_status_error_is_unresolved(self, backend):
        order_id, payment_record_id = await self._timed_out_payment(backend, captured=True)
        backend.fail("get_payment_status")

        result = await CaptureReconciler(backend, backend).reconcile(order_id, payment_record_id)
        assert result == ReconcileResult.UNRESOLVED

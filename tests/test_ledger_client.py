"""
Tests for the ledger client.

Responses come from httpx.MockTransport; no network access.
"""

import base64
import json

import httpx
import pytest

from credit_redemption.exceptions import LedgerError
from credit_redemption.models.domain import RedemptionProtocol
from credit_redemption.services.credit_packs import CREDITS_MEDIUM
from credit_redemption.services.ledger_client import (
    BALANCE_PATH,
    REDEEM_RECEIPT_PATH,
    REDEEM_SIGNED_PATH,
    LedgerClient,
)
from conftest import DEVICE_ID, LEDGER_URL, make_jws, make_receipt


def _client(handler) -> LedgerClient:
    return LedgerClient(LEDGER_URL, timeout=5.0, transport=httpx.MockTransport(handler))


class TestRedeemSigned:
    """Tests for POST /credits/redeem-signed."""

    @pytest.mark.asyncio
    async def test_grant(self, ledger_client, fake_ledger):
        """First redemption grants the pack credits."""
        outcome = await ledger_client.redeem_signed_transactions(DEVICE_ID, [make_jws("1001")])

        assert outcome.granted == 10
        assert outcome.balance == 10
        assert outcome.protocol is RedemptionProtocol.SIGNED
        assert not outcome.already_redeemed

    @pytest.mark.asyncio
    async def test_request_shape(self, ledger_client, fake_ledger):
        """Body carries signedTransactions and the device header is set."""
        jws = make_jws("1001")
        await ledger_client.redeem_signed_transactions(DEVICE_ID, [jws])

        [call] = fake_ledger.calls_to(REDEEM_SIGNED_PATH)
        assert call.device_id == DEVICE_ID
        assert call.body == {"signedTransactions": [jws]}

    @pytest.mark.asyncio
    async def test_duplicate_is_success_without_grant(self, ledger_client, fake_ledger):
        """Re-redeeming the same transaction grants nothing and keeps the balance."""
        jws = make_jws("1001", CREDITS_MEDIUM)
        await ledger_client.redeem_signed_transactions(DEVICE_ID, [jws])
        outcome = await ledger_client.redeem_signed_transactions(DEVICE_ID, [jws])

        assert outcome.granted == 0
        assert outcome.balance == 50
        assert outcome.already_redeemed

    @pytest.mark.asyncio
    async def test_conflict_is_success_without_grant(self, ledger_client, fake_ledger):
        """A 409 answer is the idempotent already-redeemed outcome."""
        fake_ledger.conflict_on_duplicate = True
        jws = make_jws("1001")
        await ledger_client.redeem_signed_transactions(DEVICE_ID, [jws])
        outcome = await ledger_client.redeem_signed_transactions(DEVICE_ID, [jws])

        assert outcome.granted == 0
        assert outcome.balance == 10
        assert outcome.already_redeemed

    @pytest.mark.asyncio
    async def test_per_transaction_rejection(self):
        """A 200 carrying rejected transactions is a ledger error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "ok": True,
                    "granted": 0,
                    "balance": 0,
                    "perTx": [{"txId": "1001", "ok": False, "error": "bundle_mismatch"}],
                },
            )

        with pytest.raises(LedgerError, match="bundle_mismatch") as exc_info:
            await _client(handler).redeem_signed_transactions(DEVICE_ID, [make_jws("1001")])

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_server_error(self, ledger_client, fake_ledger):
        """Non-2xx answers other than 409 raise with the status code."""
        fake_ledger.fail_next(REDEEM_SIGNED_PATH, status=500)

        with pytest.raises(LedgerError) as exc_info:
            await ledger_client.redeem_signed_transactions(DEVICE_ID, [make_jws("1001")])

        assert exc_info.value.status_code == 500
        assert not exc_info.value.is_transport_error
        assert fake_ledger.balances.get(DEVICE_ID, 0) == 0

    @pytest.mark.asyncio
    async def test_transport_error(self, ledger_client, fake_ledger):
        """Connection failures map to a transport LedgerError."""
        fake_ledger.fail_next(REDEEM_SIGNED_PATH)

        with pytest.raises(LedgerError, match="Transport error") as exc_info:
            await ledger_client.redeem_signed_transactions(DEVICE_ID, [make_jws("1001")])

        assert exc_info.value.is_transport_error

    @pytest.mark.asyncio
    async def test_invalid_body(self):
        """A 200 without JSON is an invalid ledger response."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>proxy error</html>")

        with pytest.raises(LedgerError, match="Invalid ledger response"):
            await _client(handler).redeem_signed_transactions(DEVICE_ID, [make_jws("1001")])


class TestRedeemReceipt:
    """Tests for POST /credits/redeem."""

    @pytest.mark.asyncio
    async def test_grant(self, ledger_client, fake_ledger):
        """Receipt redemption grants every unseen purchase in the receipt."""
        receipt = make_receipt(("1001", CREDITS_MEDIUM))
        outcome = await ledger_client.redeem_receipt(
            DEVICE_ID, base64.b64encode(receipt).decode("ascii")
        )

        assert outcome.granted == 50
        assert outcome.balance == 50
        assert outcome.protocol is RedemptionProtocol.LEGACY

    @pytest.mark.asyncio
    async def test_request_shape(self):
        """Body is {"receipt": <base64>}."""
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"ok": True, "granted": 10, "balance": 10})

        await _client(handler).redeem_receipt(DEVICE_ID, "cmVjZWlwdA==")

        [request] = captured
        assert request.url.path == REDEEM_RECEIPT_PATH
        assert request.headers["X-Device-Id"] == DEVICE_ID
        assert json.loads(request.content) == {"receipt": "cmVjZWlwdA=="}

    @pytest.mark.asyncio
    async def test_rejection(self):
        """A 400 from the store verification is a ledger error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, text='{"error":"verify_failed","status":21002}')

        with pytest.raises(LedgerError, match="verify_failed") as exc_info:
            await _client(handler).redeem_receipt(DEVICE_ID, "cmVjZWlwdA==")

        assert exc_info.value.status_code == 400


class TestBalance:
    """Tests for GET /credits/balance."""

    @pytest.mark.asyncio
    async def test_balance(self, ledger_client, fake_ledger):
        """Balance is read for the requesting device only."""
        fake_ledger.balances[DEVICE_ID] = 60
        fake_ledger.balances["OTHER"] = 5

        assert await ledger_client.fetch_balance(DEVICE_ID) == 60
        [call] = fake_ledger.calls_to(BALANCE_PATH)
        assert call.device_id == DEVICE_ID

    @pytest.mark.asyncio
    async def test_unknown_device_has_zero(self, ledger_client):
        assert await ledger_client.fetch_balance("NEW-DEVICE") == 0

    @pytest.mark.asyncio
    async def test_balance_failure(self, ledger_client, fake_ledger):
        fake_ledger.fail_next(BALANCE_PATH, status=503)

        with pytest.raises(LedgerError) as exc_info:
            await ledger_client.fetch_balance(DEVICE_ID)

        assert exc_info.value.status_code == 503

    def test_base_url_trailing_slash(self):
        client = LedgerClient(f"{LEDGER_URL}/")
        assert client.base_url == LEDGER_URL

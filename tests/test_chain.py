"""Tests for the Solana JSON-RPC client."""

import asyncio
import base64
import json
from decimal import Decimal

import httpx
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from solkeeper.chain.solana import SolanaChainClient, to_base_units
from solkeeper.errors import ChainError, ChainSubmissionError, ErrorKind

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


class FakeRpc:
    """Scripted JSON-RPC node recording every call."""

    def __init__(self, results: dict):
        self.results = results
        self.calls: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.calls.append(payload)

        result = self.results.get(payload["method"])
        if isinstance(result, httpx.Response):
            return result
        if isinstance(result, dict) and "error" in result:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], **result})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

    def methods(self) -> list[str]:
        return [c["method"] for c in self.calls]

    def sent_transaction(self) -> Transaction:
        call = next(c for c in self.calls if c["method"] == "sendTransaction")
        return Transaction.from_bytes(base64.b64decode(call["params"][0]))


def make_client(rpc: FakeRpc) -> SolanaChainClient:
    return SolanaChainClient(
        rpc_url="https://rpc.test",
        confirm_delay=0,
        transport=httpx.MockTransport(rpc),
    )


def send_results(status=None) -> dict:
    return {
        "getLatestBlockhash": {"value": {"blockhash": str(Hash.default()), "lastValidBlockHeight": 1}},
        "sendTransaction": "5igSig",
        "getSignatureStatuses": {"value": [status]},
        "getAccountInfo": {"value": None},
    }


class TestReads:
    """Tests for balance reads."""

    @pytest.mark.asyncio
    async def test_get_balance(self):
        rpc = FakeRpc({"getBalance": {"context": {"slot": 1}, "value": 1_500_000_000}})
        client = make_client(rpc)

        balance = await client.get_balance("Addr1111")

        assert balance == Decimal("1.5")
        assert rpc.calls[0]["params"][0] == "Addr1111"

    @pytest.mark.asyncio
    async def test_get_token_accounts(self):
        rpc = FakeRpc(
            {
                "getTokenAccountsByOwner": {
                    "value": [
                        {
                            "pubkey": "Acc1",
                            "account": {
                                "data": {
                                    "parsed": {
                                        "info": {
                                            "mint": USDC_MINT,
                                            "tokenAmount": {
                                                "amount": "2500000",
                                                "decimals": 6,
                                                "uiAmountString": "2.5",
                                            },
                                        }
                                    }
                                }
                            },
                        },
                        {"pubkey": "Broken", "account": {"data": "AAAA"}},
                    ]
                }
            }
        )
        client = make_client(rpc)

        holdings = await client.get_token_accounts("Owner111")

        assert len(holdings) == 1
        assert holdings[0].mint == USDC_MINT
        assert holdings[0].amount == Decimal("2.5")
        assert holdings[0].decimals == 6
        assert holdings[0].raw_amount == 2_500_000

        params = rpc.calls[0]["params"]
        assert params[1] == {"programId": str(TOKEN_PROGRAM_ID)}
        assert params[2]["encoding"] == "jsonParsed"

    @pytest.mark.asyncio
    async def test_rpc_error(self):
        rpc = FakeRpc({"getBalance": {"error": {"code": -32005, "message": "Node is behind"}}})
        client = make_client(rpc)

        with pytest.raises(ChainError) as exc_info:
            await client.get_balance("Addr1111")

        assert "Node is behind" in str(exc_info.value)
        assert exc_info.value.kind == ErrorKind.CHAIN_REQUEST_FAILED

    @pytest.mark.asyncio
    async def test_http_error(self):
        rpc = FakeRpc({"getBalance": httpx.Response(503, text="unavailable")})
        client = make_client(rpc)

        with pytest.raises(ChainError):
            await client.get_balance("Addr1111")

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        rpc = FakeRpc({"getBalance": httpx.Response(200, text="<html>rate limited</html>")})
        client = make_client(rpc)

        with pytest.raises(ChainError) as exc_info:
            await client.get_balance("Addr1111")

        assert exc_info.value.kind == ErrorKind.CHAIN_REQUEST_FAILED

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def fail(request):
            raise httpx.ConnectError("connection refused")

        client = SolanaChainClient("https://rpc.test", transport=httpx.MockTransport(fail))

        with pytest.raises(ChainError):
            await client.get_balance("Addr1111")


class TestNativeTransfer:
    """Tests for SOL transfers."""

    @pytest.mark.asyncio
    async def test_transfer_native(self):
        rpc = FakeRpc(send_results({"err": None, "confirmationStatus": "confirmed"}))
        client = make_client(rpc)
        sender = Keypair()
        recipient = Keypair().pubkey()

        result = await client.transfer_native(sender, str(recipient), Decimal("0.25"))

        assert result.signature == "5igSig"
        assert result.status == "confirmed"
        assert rpc.methods() == ["getLatestBlockhash", "sendTransaction", "getSignatureStatuses"]

        tx = rpc.sent_transaction()
        assert tx.message.account_keys[0] == sender.pubkey()
        assert recipient in tx.message.account_keys
        assert len(tx.signatures) == 1

    @pytest.mark.asyncio
    async def test_missing_status_is_submitted(self):
        rpc = FakeRpc(send_results(None))
        client = make_client(rpc)

        result = await client.transfer_native(Keypair(), str(Keypair().pubkey()), Decimal("1"))

        assert result.status == "submitted"

    @pytest.mark.asyncio
    async def test_unreadable_status_is_submitted(self):
        results = send_results()
        results["getSignatureStatuses"] = httpx.Response(200, text="not json")
        client = make_client(FakeRpc(results))

        result = await client.transfer_native(Keypair(), str(Keypair().pubkey()), Decimal("1"))

        assert result.signature == "5igSig"
        assert result.status == "submitted"

    @pytest.mark.asyncio
    async def test_slow_confirmation_keeps_signature(self):
        rpc = FakeRpc(send_results({"err": None, "confirmationStatus": "confirmed"}))
        client = SolanaChainClient(
            rpc_url="https://rpc.test",
            submit_timeout=0.05,
            confirm_delay=0.2,
            transport=httpx.MockTransport(rpc),
        )

        result = await client.transfer_native(Keypair(), str(Keypair().pubkey()), Decimal("1"))

        assert result.signature == "5igSig"
        assert result.status == "confirmed"

    @pytest.mark.asyncio
    async def test_hanging_status_poll_is_submitted(self):
        rpc = FakeRpc(send_results({"err": None, "confirmationStatus": "finalized"}))

        async def handler(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["method"] == "getSignatureStatuses":
                await asyncio.sleep(5)
            return rpc(request)

        client = SolanaChainClient(
            rpc_url="https://rpc.test",
            request_timeout=0.1,
            confirm_delay=0,
            transport=httpx.MockTransport(handler),
        )

        result = await client.transfer_native(Keypair(), str(Keypair().pubkey()), Decimal("1"))

        assert result.signature == "5igSig"
        assert result.status == "submitted"

    @pytest.mark.asyncio
    async def test_unsent_transaction_times_out(self):
        rpc = FakeRpc(send_results())

        async def handler(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["method"] == "sendTransaction":
                await asyncio.sleep(5)
            return rpc(request)

        client = SolanaChainClient(
            rpc_url="https://rpc.test",
            submit_timeout=0.1,
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(ChainSubmissionError):
            await client.transfer_native(Keypair(), str(Keypair().pubkey()), Decimal("1"))

        assert "getSignatureStatuses" not in rpc.methods()

    @pytest.mark.asyncio
    async def test_onchain_error_is_submission_failure(self):
        rpc = FakeRpc(send_results({"err": {"InstructionError": [0, "Custom"]}}))
        client = make_client(rpc)

        with pytest.raises(ChainSubmissionError):
            await client.transfer_native(Keypair(), str(Keypair().pubkey()), Decimal("1"))

    @pytest.mark.asyncio
    async def test_send_rejected(self):
        results = send_results()
        results["sendTransaction"] = {
            "error": {"code": -32002, "message": "Transaction simulation failed: insufficient lamports"}
        }
        client = make_client(FakeRpc(results))

        with pytest.raises(ChainSubmissionError) as exc_info:
            await client.transfer_native(Keypair(), str(Keypair().pubkey()), Decimal("1"))

        assert "insufficient lamports" in str(exc_info.value)
        assert exc_info.value.kind == ErrorKind.CHAIN_SUBMISSION_FAILED

    @pytest.mark.asyncio
    async def test_dust_amount_rejected(self):
        rpc = FakeRpc(send_results())
        client = make_client(rpc)

        with pytest.raises(ChainSubmissionError):
            await client.transfer_native(Keypair(), str(Keypair().pubkey()), Decimal("0.0000000001"))

        assert rpc.calls == []


class TestTokenTransfer:
    """Tests for SPL token transfers."""

    @pytest.mark.asyncio
    async def test_ensure_existing_account(self):
        results = send_results()
        results["getAccountInfo"] = {"value": {"lamports": 2039280, "owner": str(TOKEN_PROGRAM_ID)}}
        rpc = FakeRpc(results)
        client = make_client(rpc)

        signature = await client.ensure_token_account(Keypair(), USDC_MINT, str(Keypair().pubkey()))

        assert signature is None
        assert "sendTransaction" not in rpc.methods()

    @pytest.mark.asyncio
    async def test_ensure_creates_account(self):
        rpc = FakeRpc(send_results({"err": None, "confirmationStatus": "finalized"}))
        client = make_client(rpc)
        payer = Keypair()
        owner = Keypair().pubkey()

        signature = await client.ensure_token_account(payer, USDC_MINT, str(owner))

        assert signature == "5igSig"
        tx = rpc.sent_transaction()
        ata = get_associated_token_address(owner, Pubkey.from_string(USDC_MINT))
        assert ata in tx.message.account_keys
        assert ASSOCIATED_TOKEN_PROGRAM_ID in tx.message.account_keys

    @pytest.mark.asyncio
    async def test_transfer_token(self):
        rpc = FakeRpc(send_results({"err": None, "confirmationStatus": "confirmed"}))
        client = make_client(rpc)
        sender = Keypair()
        recipient = Keypair().pubkey()
        mint = Pubkey.from_string(USDC_MINT)

        result = await client.transfer_token(sender, USDC_MINT, str(recipient), Decimal("2.5"), 6)

        assert result.signature == "5igSig"
        tx = rpc.sent_transaction()
        keys = tx.message.account_keys
        assert get_associated_token_address(sender.pubkey(), mint) in keys
        assert get_associated_token_address(recipient, mint) in keys
        assert TOKEN_PROGRAM_ID in keys

        instruction = tx.message.instructions[0]
        assert bytes(instruction.data) == bytes([12]) + (2_500_000).to_bytes(8, "little") + bytes([6])


class TestHelpers:
    """Tests for unit conversion."""

    @pytest.mark.parametrize(
        "amount,decimals,expected",
        [
            (Decimal("1"), 9, 1_000_000_000),
            (Decimal("0.000000001"), 9, 1),
            (Decimal("1.0000000019"), 9, 1_000_000_001),
            (Decimal("2.5"), 6, 2_500_000),
            (Decimal("0.0000001"), 6, 0),
        ],
    )
    def test_to_base_units_rounds_down(self, amount, decimals, expected):
        assert to_base_units(amount, decimals) == expected


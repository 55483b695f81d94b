"""Solana chain access over JSON-RPC.

Reads balances and token accounts, and builds, signs and submits native
SOL and SPL token transfers. Transactions are legacy (non-versioned)
messages signed by the sender, who also pays fees and rent.

Only the steps before broadcast are bounded by the submit timeout. Once
``sendTransaction`` has returned a signature the transfer is out of our
hands, so an unreadable or late status is reported as ``submitted``.
"""

import asyncio
import base64
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Any, Optional

import httpx
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    create_idempotent_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)
from spl.token.models import TransferCheckedParams

from solkeeper.config import Settings, get_settings
from solkeeper.errors import ChainError, ChainSubmissionError
from solkeeper.ports import ChainPort, TokenHolding, TransferResult

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 10**9
SOL_DECIMALS = 9


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a UI amount to integer base units, rounding down."""
    scaled = (Decimal(amount) * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


class SolanaChainClient(ChainPort):
    """JSON-RPC client for one Solana cluster."""

    def __init__(
        self,
        rpc_url: str,
        commitment: str = "confirmed",
        request_timeout: float = 30.0,
        submit_timeout: float = 60.0,
        confirm_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            rpc_url: JSON-RPC endpoint
            commitment: Commitment level for reads and blockhashes
            request_timeout: Timeout of a single RPC request
            submit_timeout: Timeout of fetching a blockhash and broadcasting
            confirm_delay: Seconds to wait before polling the signature status
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.request_timeout = request_timeout
        self.submit_timeout = submit_timeout
        self.confirm_delay = confirm_delay
        self._transport = transport
        self._request_id = 0

    async def _rpc(
        self,
        method: str,
        params: list[Any],
        error_cls: type[ChainError] = ChainError,
    ) -> Any:
        """Call one JSON-RPC method and return its ``result``.

        Raises:
            ChainError (or ``error_cls``): On transport failure, non-200
                response or a JSON-RPC error object
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.request_timeout, transport=self._transport
            ) as client:
                response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Solana RPC {method} failed: {e}")
            raise error_cls(f"RPC request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Solana RPC {method} returned HTTP {response.status_code}")
            raise error_cls(f"RPC returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Solana RPC {method} returned a non-JSON body")
            raise error_cls("RPC returned an unreadable response") from e
        if not isinstance(data, dict):
            raise error_cls("RPC returned an unreadable response")
        if "error" in data:
            error = data["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            logger.error(f"Solana RPC {method} error: {message}")
            raise error_cls(message)

        return data.get("result")

    # ============ READS ============

    async def get_balance(self, pubkey: str) -> Decimal:
        """Native balance in SOL."""
        result = await self._rpc("getBalance", [pubkey, {"commitment": self.commitment}])
        lamports = result["value"] if isinstance(result, dict) else result
        return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)

    async def get_token_accounts(self, pubkey: str) -> list[TokenHolding]:
        """SPL token balances of a wallet, one entry per token account."""
        result = await self._rpc(
            "getTokenAccountsByOwner",
            [
                pubkey,
                {"programId": str(TOKEN_PROGRAM_ID)},
                {"encoding": "jsonParsed", "commitment": self.commitment},
            ],
        )

        holdings = []
        for entry in result.get("value", []):
            try:
                info = entry["account"]["data"]["parsed"]["info"]
                token_amount = info["tokenAmount"]
                decimals = int(token_amount["decimals"])
                raw_amount = int(token_amount["amount"])
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Skipping unparsable token account {entry.get('pubkey')}")
                continue

            holdings.append(
                TokenHolding(
                    mint=info["mint"],
                    amount=Decimal(raw_amount) / (Decimal(10) ** decimals),
                    decimals=decimals,
                    raw_amount=raw_amount,
                )
            )
        return holdings

    async def account_exists(self, address: str) -> bool:
        result = await self._rpc(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        return result is not None and result.get("value") is not None

    async def get_latest_blockhash(self) -> Hash:
        result = await self._rpc(
            "getLatestBlockhash",
            [{"commitment": self.commitment}],
            error_cls=ChainSubmissionError,
        )
        return Hash.from_string(result["value"]["blockhash"])

    # ============ SUBMISSION ============

    async def _broadcast(self, signer: Keypair, instructions: list[Instruction]) -> str:
        """Sign with a fresh blockhash and send. Returns the signature."""
        blockhash = await self.get_latest_blockhash()
        message = Message(instructions, signer.pubkey())
        tx = Transaction([signer], message, blockhash)

        encoded = base64.b64encode(bytes(tx)).decode()
        signature = await self._rpc(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
            error_cls=ChainSubmissionError,
        )
        signature = str(signature or tx.signatures[0])
        logger.info(f"Transaction sent: {signature}")
        return signature

    async def _poll_status(self, signature: str) -> str:
        """Poll the signature status once after the confirmation delay.

        Raises:
            ChainSubmissionError: If the chain reports the transaction failed
        """
        await asyncio.sleep(self.confirm_delay)

        try:
            result = await self._rpc("getSignatureStatuses", [[signature]])
        except ChainError as e:
            logger.warning(f"Status poll for {signature} failed: {e}")
            return "submitted"

        statuses = result.get("value") if isinstance(result, dict) else None
        status = statuses[0] if isinstance(statuses, list) and statuses else None
        if not isinstance(status, dict):
            return "submitted"
        if status.get("err") is not None:
            raise ChainSubmissionError(f"Transaction {signature} failed: {status['err']}")

        confirmation = status.get("confirmationStatus")
        if confirmation in ("confirmed", "finalized"):
            return confirmation
        return "submitted"

    async def _submit(self, signer: Keypair, instructions: list[Instruction]) -> TransferResult:
        try:
            signature = await asyncio.wait_for(
                self._broadcast(signer, instructions), timeout=self.submit_timeout
            )
        except asyncio.TimeoutError:
            raise ChainSubmissionError(f"Transaction not sent within {self.submit_timeout}s")

        try:
            status = await asyncio.wait_for(
                self._poll_status(signature),
                timeout=self.confirm_delay + self.request_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Status poll for {signature} timed out")
            status = "submitted"
        return TransferResult(signature=signature, status=status)

    async def transfer_native(self, sender: Keypair, to: str, amount: Decimal) -> TransferResult:
        """Send SOL from the sender's wallet."""
        lamports = to_base_units(amount, SOL_DECIMALS)
        if lamports <= 0:
            raise ChainSubmissionError(f"Amount {amount} is below one lamport")

        instruction = transfer(
            TransferParams(
                from_pubkey=sender.pubkey(),
                to_pubkey=Pubkey.from_string(to),
                lamports=lamports,
            )
        )
        logger.info(f"Sending {amount} SOL from {sender.pubkey()} to {to}")
        return await self._submit(sender, [instruction])

    async def ensure_token_account(self, payer: Keypair, mint: str, owner: str) -> Optional[str]:
        """Create the owner's associated token account, paid by ``payer``."""
        owner_key = Pubkey.from_string(owner)
        mint_key = Pubkey.from_string(mint)
        ata = get_associated_token_address(owner_key, mint_key)

        if await self.account_exists(str(ata)):
            return None

        logger.info(f"Creating token account {ata} for {owner} (mint {mint})")
        instruction = create_idempotent_associated_token_account(
            payer=payer.pubkey(),
            owner=owner_key,
            mint=mint_key,
        )
        result = await self._submit(payer, [instruction])
        return result.signature

    async def transfer_token(
        self,
        sender: Keypair,
        mint: str,
        to: str,
        amount: Decimal,
        decimals: int,
    ) -> TransferResult:
        """Send an SPL token between associated token accounts."""
        raw_amount = to_base_units(amount, decimals)
        if raw_amount <= 0:
            raise ChainSubmissionError(f"Amount {amount} is below the token's smallest unit")

        mint_key = Pubkey.from_string(mint)
        instruction = transfer_checked(
            TransferCheckedParams(
                program_id=TOKEN_PROGRAM_ID,
                source=get_associated_token_address(sender.pubkey(), mint_key),
                mint=mint_key,
                dest=get_associated_token_address(Pubkey.from_string(to), mint_key),
                owner=sender.pubkey(),
                amount=raw_amount,
                decimals=decimals,
            )
        )
        logger.info(f"Sending {amount} of {mint} from {sender.pubkey()} to {to}")
        return await self._submit(sender, [instruction])


def get_chain_client(settings: Optional[Settings] = None) -> SolanaChainClient:
    """Get a chain client configured from settings."""
    settings = settings or get_settings()
    return SolanaChainClient(
        rpc_url=settings.sol_rpc_url,
        commitment=settings.sol_commitment,
        request_timeout=settings.chain_request_timeout,
        submit_timeout=settings.chain_submit_timeout,
        confirm_delay=settings.chain_confirm_delay,
    )

"""Guided withdrawal flow.

Withdrawal flow:
1. User starts a withdrawal; balances of the active wallet are read
2. User picks a token
3. User enters an amount (0 < amount <= balance)
4. User enters a destination address (on-curve Solana public key)
5. User confirms with "yes" (or aborts with "cancel")
6. The secret is decrypted, the transfer signed and submitted
7. A withdrawal record is appended

Each step is one call taking the user's identity. All calls of one identity
are serialized, and every call returns a ``WithdrawalReply`` describing the
state the user is now in.
"""

import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from solkeeper import keycodec
from solkeeper.crypto import SecretCipher
from solkeeper.errors import (
    ChainError,
    CorruptSecretError,
    ErrorKind,
    SessionExpiredError,
    UserNotFoundError,
)
from solkeeper.ledger.models import WithdrawalRecord, WithdrawalStatus
from solkeeper.ledger.wallet_ledger import WalletLedger
from solkeeper.lifecycle import WalletLifecycle
from solkeeper.ports import ChainPort, PersistencePort, TransferResult
from solkeeper.withdrawal.sessions import (
    SessionStore,
    TokenOption,
    WithdrawalSession,
    WithdrawalState,
)

logger = logging.getLogger(__name__)

NATIVE_MINT = "So11111111111111111111111111111111111111112"
NATIVE_SYMBOL = "SOL"
NATIVE_DECIMALS = 9

LedgerScope = Callable[[], AbstractAsyncContextManager[PersistencePort]]


@dataclass
class WithdrawalReply:
    """What to tell the user after a step.

    ``error`` is None for normal progress and for re-prompts after invalid
    input; re-prompts keep ``state`` unchanged.
    """

    state: WithdrawalState
    message: str
    error: Optional[ErrorKind] = None
    record: Optional[WithdrawalRecord] = None
    tokens: Optional[list[TokenOption]] = None

    @property
    def completed(self) -> bool:
        return self.record is not None


def format_amount(amount: Decimal) -> str:
    """Plain decimal notation without trailing zeros."""
    text = format(Decimal(amount), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


class WithdrawalEngine:
    """State machine driving one withdrawal per user."""

    def __init__(
        self,
        cipher: SecretCipher,
        chain: ChainPort,
        sessions: SessionStore,
        ledger_scope: LedgerScope,
        token_symbols: Optional[dict[str, str]] = None,
    ):
        """Initialize the engine.

        Args:
            cipher: Cipher the wallet secrets were sealed with
            chain: Chain access for balances and transfers
            sessions: Store holding the in-progress sessions
            ledger_scope: Factory of transactional persistence scopes
            token_symbols: Optional mint -> symbol names for display
        """
        self.cipher = cipher
        self.chain = chain
        self.sessions = sessions
        self.ledger_scope = ledger_scope
        self.token_symbols = dict(token_symbols or {})

    # ============ REPLIES ============

    @staticmethod
    def _expired(message: str = "Session expired. Start again.") -> WithdrawalReply:
        return WithdrawalReply(WithdrawalState.IDLE, message, error=ErrorKind.SESSION_EXPIRED)

    def _abort(self, identity: str, message: str = "Session expired. Start again.") -> WithdrawalReply:
        self.sessions.clear(identity)
        return self._expired(message)

    def _symbol(self, mint: str) -> str:
        return self.token_symbols.get(mint, mint[:6])

    # ============ STEPS ============

    async def start(self, identity: str) -> WithdrawalReply:
        """Open a session for the user's active wallet.

        Any previous session of the user is discarded.
        """
        async with self.sessions.lock(identity, "withdraw_start"):
            self.sessions.clear(identity)

            async with self.ledger_scope() as port:
                ledger = WalletLedger(port)
                try:
                    user = await ledger.get_user(identity)
                except UserNotFoundError:
                    return WithdrawalReply(
                        WithdrawalState.IDLE,
                        "No account found. Send /start first.",
                        error=ErrorKind.USER_NOT_FOUND,
                    )
                wallet = await ledger.get_active_wallet(user.id)

            if wallet is None:
                return WithdrawalReply(
                    WithdrawalState.IDLE,
                    "No active wallet found. Please try again.",
                    error=ErrorKind.WALLET_NOT_FOUND,
                )
            if wallet.is_locked:
                return WithdrawalReply(
                    WithdrawalState.IDLE,
                    "This wallet is locked. Unlock it before withdrawing.",
                    error=ErrorKind.WALLET_LOCKED,
                )

            try:
                tokens = await self._scan_tokens(wallet.public_key)
            except ChainError as e:
                logger.error(f"Token scan failed for {wallet.public_key}: {e}")
                return WithdrawalReply(
                    WithdrawalState.IDLE,
                    "Error scanning wallet tokens. Please try again later.",
                    error=ErrorKind.CHAIN_REQUEST_FAILED,
                )

            self.sessions.open(
                WithdrawalSession(
                    identity=str(identity),
                    wallet_id=wallet.id,
                    from_address=wallet.public_key,
                    tokens=tokens,
                )
            )

        lines = [f"{t.symbol}: {format_amount(t.amount)}" for t in tokens]
        return WithdrawalReply(
            WithdrawalState.AWAITING_TOKEN,
            "Select a token to withdraw:\n" + "\n".join(lines),
            tokens=tokens,
        )

    async def _scan_tokens(self, public_key: str) -> list[TokenOption]:
        """Native SOL first, then every token with a positive balance."""
        balance = await self.chain.get_balance(public_key)
        holdings = await self.chain.get_token_accounts(public_key)

        tokens = [
            TokenOption(
                mint=NATIVE_MINT,
                symbol=NATIVE_SYMBOL,
                amount=balance,
                decimals=NATIVE_DECIMALS,
                is_native=True,
            )
        ]

        # A wallet may hold several accounts of one mint
        by_mint: dict[str, TokenOption] = {}
        for holding in holdings:
            if holding.amount <= 0 or holding.mint == NATIVE_MINT:
                continue
            option = by_mint.get(holding.mint)
            if option is None:
                by_mint[holding.mint] = TokenOption(
                    mint=holding.mint,
                    symbol=self._symbol(holding.mint),
                    amount=holding.amount,
                    decimals=holding.decimals,
                )
            else:
                option.amount += holding.amount

        tokens.extend(by_mint.values())
        return tokens

    async def select_token(self, identity: str, mint: str) -> WithdrawalReply:
        """Pick the token to withdraw from the session's candidate list."""
        async with self.sessions.lock(identity, "withdraw_select"):
            try:
                session = self.sessions.get(identity)
            except SessionExpiredError:
                return self._expired()
            if session is None:
                return self._expired()

            return self._select(session, mint)

    def _select(self, session: WithdrawalSession, mint: str) -> WithdrawalReply:
        if session.state != WithdrawalState.AWAITING_TOKEN:
            return self._abort(session.identity)

        token = session.find_token(mint)
        if token is None:
            logger.warning(f"User {session.identity} selected unknown mint {mint}")
            return self._abort(session.identity, "Token not found. Please start again.")

        session.token = token
        session.state = WithdrawalState.AWAITING_AMOUNT
        self.sessions.touch(session)
        return WithdrawalReply(
            WithdrawalState.AWAITING_AMOUNT,
            f"Enter the amount of {token.symbol} to withdraw "
            f"(available: {format_amount(token.amount)}):",
        )

    async def handle_text(self, identity: str, text: str) -> Optional[WithdrawalReply]:
        """Route a text message to the current step.

        Returns None when the user has no withdrawal in progress, so the
        caller can hand the message to another flow.
        """
        async with self.sessions.lock(identity, "withdraw_text"):
            try:
                session = self.sessions.get(identity)
            except SessionExpiredError:
                return self._expired()
            if session is None:
                return None

            if session.state == WithdrawalState.AWAITING_TOKEN:
                return self._select(session, self._match_token(session, text))
            elif session.state == WithdrawalState.AWAITING_AMOUNT:
                return self._handle_amount(session, text)
            elif session.state == WithdrawalState.AWAITING_ADDRESS:
                return self._handle_address(session, text)
            elif session.state == WithdrawalState.AWAITING_CONFIRM:
                return await self._handle_confirm(session, text)

            return self._abort(identity)

    @staticmethod
    def _match_token(session: WithdrawalSession, text: str) -> str:
        """Resolve typed text (mint or symbol) to a mint."""
        text = text.strip()
        for token in session.tokens:
            if text == token.mint or text.upper() == token.symbol.upper():
                return token.mint
        return text

    def _handle_amount(self, session: WithdrawalSession, text: str) -> WithdrawalReply:
        token = session.token
        if token is None:
            return self._abort(session.identity)

        try:
            amount = Decimal(text.strip().replace(",", ""))
        except InvalidOperation:
            amount = None

        if amount is None or not amount.is_finite() or amount <= 0 or amount > token.amount:
            self.sessions.touch(session)
            return WithdrawalReply(
                WithdrawalState.AWAITING_AMOUNT,
                f"❌ Invalid amount. Enter a number between 0 and "
                f"{format_amount(token.amount)} {token.symbol}",
            )

        session.amount = amount
        session.state = WithdrawalState.AWAITING_ADDRESS
        self.sessions.touch(session)
        return WithdrawalReply(
            WithdrawalState.AWAITING_ADDRESS,
            "Enter the Solana address to withdraw to:",
        )

    def _handle_address(self, session: WithdrawalSession, text: str) -> WithdrawalReply:
        address = text.strip()
        self.sessions.touch(session)

        if not keycodec.is_valid_address(address):
            return WithdrawalReply(
                WithdrawalState.AWAITING_ADDRESS,
                "❌ Invalid Solana address. Please enter a valid address.",
            )

        session.address = address
        session.state = WithdrawalState.AWAITING_CONFIRM
        return WithdrawalReply(
            WithdrawalState.AWAITING_CONFIRM,
            f"You are about to withdraw {format_amount(session.amount)} {session.token.symbol} "
            f"to address:\n{address}\n\n"
            f'Reply with "yes" to confirm or "cancel" to abort.',
        )

    async def _handle_confirm(self, session: WithdrawalSession, text: str) -> WithdrawalReply:
        answer = text.strip().lower()

        if answer == "cancel":
            self.sessions.clear(session.identity)
            return WithdrawalReply(WithdrawalState.IDLE, "Withdrawal cancelled.")

        if answer != "yes":
            self.sessions.touch(session)
            return WithdrawalReply(
                WithdrawalState.AWAITING_CONFIRM,
                '❓ Reply "yes" to confirm or "cancel" to abort.',
            )

        try:
            return await self._execute(session)
        except Exception:
            self.sessions.clear(session.identity)
            raise

    async def cancel(self, identity: str) -> WithdrawalReply:
        """Abort the user's withdrawal, if any."""
        async with self.sessions.lock(identity, "withdraw_cancel"):
            self.sessions.clear(identity)
        return WithdrawalReply(WithdrawalState.IDLE, "Withdrawal cancelled.")

    # ============ EXECUTION ============

    async def _execute(self, session: WithdrawalSession) -> WithdrawalReply:
        """Decrypt, submit and record. The session is cleared on every path."""
        identity = session.identity
        token = session.token

        async with self.ledger_scope() as port:
            ledger = WalletLedger(port)
            user = await ledger.get_user(identity)
            wallet = await ledger.get_active_wallet(user.id)

            if wallet is None or wallet.id != session.wallet_id:
                logger.warning(f"Active wallet of user {user.id} changed during withdrawal")
                return self._abort(identity)
            if wallet.is_locked:
                self.sessions.clear(identity)
                return WithdrawalReply(
                    WithdrawalState.IDLE,
                    "This wallet is locked. Unlock it before withdrawing.",
                    error=ErrorKind.WALLET_LOCKED,
                )

            try:
                material = await WalletLifecycle(ledger, self.cipher).recover_secret(wallet, user)
            except CorruptSecretError:
                self.sessions.clear(identity)
                return WithdrawalReply(
                    WithdrawalState.IDLE,
                    "❌ Decryption Failed. Unable to access wallet for withdrawal. "
                    "Please check your wallet status or contact support.",
                    error=ErrorKind.CORRUPT_SECRET,
                )

            user_id = user.id
            wallet_id = wallet.id

        keypair = keycodec.keypair_from_secret(material)
        try:
            result = await self._submit(keypair, token, session)
        except ChainError as e:
            logger.error(f"Withdrawal of {session.amount} {token.symbol} by user {user_id} failed: {e}")
            self.sessions.clear(identity)
            return WithdrawalReply(
                WithdrawalState.IDLE,
                f"❌ Withdrawal failed: {e}",
                error=ErrorKind.CHAIN_SUBMISSION_FAILED,
            )

        async with self.ledger_scope() as port:
            ledger = WalletLedger(port)
            wallet = await ledger.get_wallet(user_id, wallet_id)
            try:
                record = await ledger.record_withdrawal(
                    user_id=user_id,
                    wallet=wallet,
                    to_address=session.address,
                    amount=session.amount,
                    token_mint=token.mint,
                    token_symbol=token.symbol,
                    tx_signature=result.signature,
                    status=WithdrawalStatus(result.status),
                )
            except Exception:
                logger.error(f"Withdrawal {result.signature} submitted but not recorded")
                raise

        self.sessions.clear(identity)
        return WithdrawalReply(
            WithdrawalState.IDLE,
            f"✅ Withdrawal successful!\n\n{format_amount(session.amount)} {token.symbol} "
            f"sent to {session.address}\n\nhttps://solscan.io/tx/{result.signature}",
            record=record,
        )

    async def _submit(self, keypair, token: TokenOption, session: WithdrawalSession) -> TransferResult:
        if token.is_native:
            return await self.chain.transfer_native(keypair, session.address, session.amount)

        await self.chain.ensure_token_account(keypair, token.mint, session.address)
        return await self.chain.transfer_token(
            keypair, token.mint, session.address, session.amount, token.decimals
        )

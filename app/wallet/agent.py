# app/wallet/agent.py
"""
Agent wallets: server-held keypairs that pay for assets without a human
signing each transfer.

The private key is stored only in encrypted form; every payment requires
the owner's password to unlock it. Counter updates go through the
repository's atomic `apply_agent_payment`, once per payment signature.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.chain.base import ChainClient, ChainRPCError
from app.core.errors import (
    AgentNotFoundError,
    BadRequestError,
    ChallengeExpiredError,
    InsufficientBalanceError,
    PaymentError,
    ServerError,
    UnauthorizedError,
    VerificationFailedError,
)
from app.storage.records import AgentWallet
from app.storage.repository import Repository
from app.wallet.vault import DecryptionError, KeyVault
from app.x402 import audit
from app.x402.challenge import is_challenge_expired
from app.x402.verifier import ReceiptVerifier

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD_MIN_LENGTH = 8


def to_decimal_string(amount: int, decimals: int) -> str:
    """Smallest-unit amount as a plain decimal string, e.g. 500000 -> "0.5"."""
    value = (Decimal(amount) / (Decimal(10) ** decimals)).normalize()
    return f"{value:f}"


def format_token_amount(amount: int, decimals: int, currency: str) -> str:
    """Render a smallest-unit amount for humans, e.g. 500000 -> "0.5 USDC"."""
    return f"{to_decimal_string(amount, decimals)} {currency}"


@dataclass
class AgentPaymentResult:
    signature: str
    access_token: str
    asset_id: str
    explorer_url: str
    agent: AgentWallet


class AgentWalletService:
    """Creates, funds and spends from password-protected agent wallets."""

    def __init__(
        self,
        repository: Repository,
        chain: ChainClient,
        vault: KeyVault,
        verifier: ReceiptVerifier,
        currency: str = "USDC",
        decimals: int = 6,
        default_token_address: Optional[str] = None,
        password_min_length: int = DEFAULT_PASSWORD_MIN_LENGTH,
    ):
        self.repository = repository
        self.chain = chain
        self.vault = vault
        self.verifier = verifier
        self.currency = currency
        self.decimals = decimals
        self.default_token_address = default_token_address
        self.password_min_length = password_min_length

    def create(self, user_id: str, password: str) -> AgentWallet:
        if not user_id:
            raise BadRequestError("userId is required")
        if not password or len(password) < self.password_min_length:
            raise BadRequestError(
                f"Password must be at least {self.password_min_length} characters"
            )

        address, private_key = self.chain.generate_keypair()
        agent = AgentWallet(
            id=str(uuid.uuid4()),
            user_id=user_id,
            agent_address=address,
            encrypted_private_key=self.vault.encrypt(private_key, password),
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self.repository.save_agent_wallet(agent)

        logger.info(f"Created agent wallet {agent.id} ({address}) for user {user_id}")
        audit.log_agent_created(agent.id, user_id, address)
        return agent

    def fund(self, agent_id: str, from_wallet: str, signature: str) -> AgentWallet:
        """
        Record a user-initiated funding transfer by re-reading the agent's
        on-chain balance. The transfer itself is signed client-side.
        """
        if not agent_id or not from_wallet or not signature:
            raise BadRequestError("agentId, fromWallet and signature are required")

        agent = self._get_agent(agent_id)
        if self.chain.get_confirmed_transaction(signature) is None:
            raise BadRequestError(
                "Funding transaction not found",
                explorerUrl=self.chain.explorer_url(signature),
            )

        balance = self._read_balance(agent.agent_address, self.default_token_address)
        updated = self.repository.update_agent_balance(agent.id, balance)

        logger.info(f"Agent {agent.id} funded by {from_wallet}, balance now {balance}")
        audit.log_agent_funded(agent.id, agent.agent_address, from_wallet, signature, balance)
        return updated or agent

    def pay(
        self,
        agent_id: str,
        password: str,
        asset_id: str,
        challenge: Dict[str, Any],
        payment_request_token: str,
    ) -> AgentPaymentResult:
        """
        Pay for an asset from the agent wallet.

        Args:
            agent_id: Agent wallet to spend from
            password: Owner's password (unlocks the private key)
            asset_id: Asset being purchased
            challenge: The 402 challenge body (amount, mint, recipient, expiresAt;
                decimals and currency format balance errors)
            payment_request_token: Correlation token from the challenge response

        Raises:
            AgentNotFoundError: Unknown agent
            UnauthorizedError: Password did not unlock the key
            InsufficientBalanceError: On-chain balance below the price; nothing is submitted
            VerificationFailedError: Transfer submitted but the receipt did not verify
        """
        if not agent_id or not password or not asset_id or not challenge:
            raise BadRequestError("agentId, password, assetId and paymentChallenge are required")

        try:
            amount = int(challenge["amount"])
            token_address = challenge["mint"]
            recipient = challenge["recipient"]
            decimals = int(challenge.get("decimals", self.decimals))
        except (KeyError, TypeError, ValueError):
            raise BadRequestError("paymentChallenge must carry amount, mint and recipient") from None
        if amount <= 0:
            raise BadRequestError("paymentChallenge amount must be positive")
        currency = challenge.get("currency") or self.currency
        if is_challenge_expired(challenge.get("expiresAt")):
            raise ChallengeExpiredError(expiresAt=challenge.get("expiresAt"))

        agent = self._get_agent(agent_id)
        try:
            private_key = self.vault.decrypt(agent.encrypted_private_key, password)
        except DecryptionError:
            logger.warning(f"Failed unlock attempt for agent {agent.id}")
            audit.log_agent_payment(agent.id, agent.agent_address, asset_id, "", amount,
                                    success=False, reason="unauthorized")
            raise UnauthorizedError("Invalid password") from None

        balance = self._read_balance(agent.agent_address, token_address)
        if balance < amount:
            audit.log_agent_payment(agent.id, agent.agent_address, asset_id, "", amount,
                                    success=False, reason="insufficient_balance")
            have = format_token_amount(balance, decimals, currency)
            need = format_token_amount(amount, decimals, currency)
            raise InsufficientBalanceError(
                f"Insufficient balance. Agent has {have}, needs {need}",
                balance=have,
                required=need,
            )

        try:
            signature = self.chain.send_signed_transfer(private_key, token_address, recipient, amount)
        except ChainRPCError as e:
            logger.error(f"Agent {agent.id} transfer submission failed: {e}")
            raise ServerError("Transfer submission failed") from e
        finally:
            del private_key

        explorer_url = self.chain.explorer_url(signature)
        try:
            result = self.verifier.verify(
                signature,
                payment_request_token,
                asset_id,
                challenge_expires_at=challenge.get("expiresAt"),
            )
        except PaymentError as e:
            audit.log_agent_payment(agent.id, agent.agent_address, asset_id, signature, amount,
                                    success=False, reason=e.code)
            raise VerificationFailedError(
                f"Payment verification failed: {e.code}",
                signature=signature,
                explorerUrl=explorer_url,
            ) from e

        updated = self.repository.apply_agent_payment(agent.id, signature, amount) or agent
        logger.info(f"Agent {agent.id} paid {amount} for {asset_id} in {signature}")
        audit.log_agent_payment(agent.id, agent.agent_address, asset_id, signature, amount, success=True)

        return AgentPaymentResult(
            signature=signature,
            access_token=result.access_token,
            asset_id=result.asset_id,
            explorer_url=explorer_url,
            agent=updated,
        )

    def list_for_user(self, user_id: str) -> List[AgentWallet]:
        if not user_id:
            raise BadRequestError("userId is required")
        return self.repository.list_agent_wallets(user_id)

    def _get_agent(self, agent_id: str) -> AgentWallet:
        agent = self.repository.get_agent_wallet(agent_id)
        if agent is None:
            raise AgentNotFoundError(agentId=agent_id)
        return agent

    def _read_balance(self, owner: str, token_address: Optional[str]) -> int:
        if not token_address:
            raise BadRequestError("Token address is required to read a balance")
        try:
            return self.chain.get_token_balance(owner, token_address)
        except ChainRPCError as e:
            logger.error(f"Balance lookup for {owner} failed: {e}")
            raise ServerError("Balance lookup failed") from e

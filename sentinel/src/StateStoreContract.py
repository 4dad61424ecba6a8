"""StateStoreContract: StateStore backed by the deployed AutoSentinel contract.

Reads are plain contract calls. Writes are transactions signed by the local
account configured in ContractUtility; the contract itself enforces
authorization, input validation and the minimum update interval, and its
revert reasons are mapped onto the StateStore exceptions.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from web3 import Web3
from web3.exceptions import ContractLogicError

from .ContractUtility import ContractUtility
from .StateStore import (
    InvalidInput,
    RateLimited,
    StateStore,
    StateStoreError,
    Statistics,
    StoredDecision,
    Unauthorized,
)

if TYPE_CHECKING:
    from web3.contract import Contract

logger = logging.getLogger(__name__)

ZERO_BYTES32 = b"\x00" * 32


def _bytes32_to_str(value: bytes) -> str:
    """Render a bytes32 request ID as 0x-hex ("" when unset)."""
    if not value or bytes(value) == ZERO_BYTES32:
        return ""
    return "0x" + bytes(value).hex()


def _to_decision(row: Any) -> StoredDecision:
    """Convert a getLatestState/getStateHistory tuple to a StoredDecision."""
    timestamp, eth, btc, score, triggered, reason, sources, request_id = row
    return StoredDecision(
        timestamp=int(timestamp),
        eth_price=int(eth),
        btc_price=int(btc),
        score=int(score),
        triggered=bool(triggered),
        reason=reason,
        sources=sources,
        request_id=_bytes32_to_str(request_id),
    )


class StateStoreContract(StateStore):
    """StateStore implementation talking to the contract over JSON-RPC.

    :ivar w3: Web3 instance (with signing middleware for writes).
    :ivar contract: AutoSentinel contract instance.
    :ivar tx_timeout: Seconds to wait for a transaction receipt.
    """

    def __init__(self, w3: Web3, contract: Contract, tx_timeout: float = 120.0) -> None:
        """Initialize the contract-backed store.

        :param w3: Web3 instance.
        :param contract: AutoSentinel contract instance.
        :param tx_timeout: Receipt wait timeout in seconds (default: 120).
        """
        self.w3 = w3
        self.contract = contract
        self.tx_timeout = tx_timeout
        # Serializes this process's writes; the contract serializes everyone's.
        self._lock = threading.Lock()

    @classmethod
    def connect(
        cls, network_name: str, address: str, private_key: str | None = None
    ) -> StateStoreContract:
        """Connect to a deployed contract.

        :param network_name: Network name or RPC URL.
        :param address: Contract address.
        :param private_key: Hex private key for signing writes (None: read-only).
        :returns: Configured StateStoreContract.
        """
        utility = ContractUtility(network_name, private_key)
        abi = ContractUtility.get_contract_abi("AutoSentinel")
        contract = utility.w3.eth.contract(
            address=Web3.to_checksum_address(address), abi=abi
        )
        logger.info(f"Connected to AutoSentinel at {address} via {utility.network}")
        return cls(utility.w3, contract)

    def write(
        self,
        eth_price: int,
        btc_price: int,
        score: int,
        triggered: bool,
        reason: str,
        *,
        sources: str = "",
        request_id: str = "",
        sender: str | None = None,
    ) -> StoredDecision:
        """Submit updateSentinelState; see StateStore.write().

        The transaction is always signed by the configured account; ``sender``
        is accepted for interface compatibility and only logged.
        """
        account = self.w3.eth.default_account
        if not account:
            raise Unauthorized("no signing account configured")

        with self._lock:
            try:
                tx_hash = self.contract.functions.updateSentinelState(
                    eth_price, btc_price, score, triggered, reason
                ).transact()
            except ContractLogicError as e:
                raise self._map_revert(e) from e

            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.tx_timeout
            )
            if receipt["status"] != 1:
                raise StateStoreError(f"Transaction {Web3.to_hex(tx_hash)} reverted")

            block = self.w3.eth.get_block(receipt["blockNumber"])

        logger.info(
            f"State updated on-chain by {sender or account}: score={score}, "
            f"triggered={triggered}, tx={Web3.to_hex(tx_hash)}, "
            f"block={receipt['blockNumber']}, gas={receipt['gasUsed']}"
        )
        return StoredDecision(
            timestamp=int(block["timestamp"]),
            eth_price=eth_price,
            btc_price=btc_price,
            score=score,
            triggered=triggered,
            reason=reason,
            sources=sources,
            request_id=request_id,
        )

    def read_latest(self) -> StoredDecision | None:
        row = self.contract.functions.getLatestState().call()
        decision = _to_decision(row)
        if decision.timestamp == 0:
            return None
        return decision

    def read_statistics(self) -> Statistics:
        updates, triggers, requests, threshold, last_update, last_request = (
            self.contract.functions.getStatistics().call()
        )
        return Statistics(
            total_updates=int(updates),
            total_threshold_triggers=int(triggers),
            total_requests=int(requests),
            current_threshold=int(threshold),
            last_update_time=int(last_update),
            last_request_id=_bytes32_to_str(last_request),
        )

    def read_history(self, n: int) -> list[StoredDecision]:
        if n < 0:
            raise InvalidInput("history count must be non-negative")
        if n == 0:
            return []
        rows = self.contract.functions.getStateHistory(n).call()
        return [_to_decision(row) for row in rows]

    def history_length(self) -> int:
        """Number of decisions held in the contract's history."""
        return int(self.contract.functions.getHistoryLength().call())

    def record_request(self, request_id: str) -> None:
        # The contract counts requests itself when it issues them.
        logger.debug(f"Request {request_id} accepted (counted on-chain)")

    def time_until_next_update(self) -> float:
        return float(self.contract.functions.timeUntilNextUpdate().call())

    def set_threshold(self, value: int) -> None:
        """Change the on-chain threshold (the signing account must be owner).

        :param value: New threshold in [0, 100].
        :raises InvalidInput: If value is outside [0, 100].
        :raises Unauthorized: If the account is not the owner.
        """
        if not 0 <= value <= 100:
            raise InvalidInput("threshold must be 0-100")
        with self._lock:
            try:
                tx_hash = self.contract.functions.setThreshold(value).transact()
            except ContractLogicError as e:
                raise self._map_revert(e) from e
            self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        logger.info(f"On-chain threshold set to {value}")

    @staticmethod
    def _map_revert(error: ContractLogicError) -> StateStoreError:
        """Translate a contract revert reason into a StateStore exception."""
        message = str(error)
        lowered = message.lower()
        if "too frequent" in lowered:
            return RateLimited(message)
        if "not authorized" in lowered or "not owner" in lowered:
            return Unauthorized(message)
        return InvalidInput(message)

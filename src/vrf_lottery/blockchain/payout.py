"""Payout sinks: where the pooled funds go once a winner is picked."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted

from vrf_lottery.utils.common import normalize_eth_address, shorten_eth_address
from vrf_lottery.utils.key_manager import validate_eth_private_key_format
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

TRANSFER_GAS = 21000


class PayoutSink(Protocol):
    def transfer(self, recipient: str, amount: int) -> Any:
        ...


class TransferRejected(Exception):
    pass


@dataclass
class TransferRecord:
    recipient: str
    amount: int
    tx_hash: Optional[str] = None


class LedgerPayoutSink:
    """In-memory address -> balance ledger."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._balances: Dict[str, int] = {}
        self._rejected: Set[str] = set()
        self.transfers: List[TransferRecord] = []

    def reject(self, address: str) -> None:
        with self._lock:
            self._rejected.add(normalize_eth_address(address))

    def accept(self, address: str) -> None:
        with self._lock:
            self._rejected.discard(normalize_eth_address(address))

    def balance_of(self, address: str) -> int:
        with self._lock:
            return self._balances.get(normalize_eth_address(address), 0)

    def transfer(self, recipient: str, amount: int) -> TransferRecord:
        recipient = normalize_eth_address(recipient)
        with self._lock:
            if recipient in self._rejected:
                raise TransferRejected(f"{recipient} rejected a transfer of {amount} wei")
            self._balances[recipient] = self._balances.get(recipient, 0) + int(amount)
            record = TransferRecord(recipient=recipient, amount=int(amount))
            self.transfers.append(record)
        logger.info("Credited %s wei to %s", amount, shorten_eth_address(recipient))
        return record


class Web3PayoutSink:
    """Sends the prize as a plain value transfer from the operator account."""

    def __init__(self, config: Dict[str, Any], w3: Optional[Web3] = None) -> None:
        blockchain_cfg = config.get("blockchain", {})
        self.rpc_url: str = blockchain_cfg.get("rpc_url", "http://127.0.0.1:8545")
        self.rpc_timeout = float(blockchain_cfg.get("rpc_timeout", 10.0))
        self.chain_id = int(blockchain_cfg.get("chain_id", 31337))
        self.receipt_timeout = int(blockchain_cfg.get("tx_timeout_seconds", 180))

        private_key = blockchain_cfg.get("operator_private_key", "")
        valid, error = validate_eth_private_key_format(private_key)
        if not valid:
            raise ValueError(f"Invalid operator private key: {error}")
        self.account = Account.from_key(private_key)

        self._gas_price_override: Optional[int] = None
        gas_price_setting = blockchain_cfg.get("gas_price")
        if gas_price_setting:
            self._gas_price_override = Web3.to_wei(Decimal(str(gas_price_setting)), "gwei")

        self._w3 = w3 or Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
        self._lock = Lock()
        self._in_flight: Dict[Tuple[str, int], Any] = {}
        logger.info("Payout account loaded: %s", self.account.address)

    @property
    def address(self) -> str:
        return self.account.address

    def transfer(self, recipient: str, amount: int) -> TransferRecord:
        """Send `amount` wei to `recipient` and wait for the receipt.

        A transfer whose receipt did not arrive in time stays in flight: the
        next call for the same recipient and amount waits on that transaction
        again instead of broadcasting a second one.
        """
        recipient = normalize_eth_address(recipient)
        amount = int(amount)
        key = (recipient, amount)
        w3 = self._w3
        with self._lock:
            tx_hash = self._in_flight.get(key)
            if tx_hash is None:
                tx_hash = self._send(recipient, amount)
                self._in_flight[key] = tx_hash
            else:
                logger.info("Resuming in-flight transfer to %s", shorten_eth_address(recipient))

        tx_hex = tx_hash.hex() if isinstance(tx_hash, (bytes, bytearray)) else str(tx_hash)
        try:
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as exc:
            raise TransferRejected(f"Transfer {tx_hex} to {recipient} not mined yet") from exc

        with self._lock:
            self._in_flight.pop(key, None)
        if int(receipt["status"]) != 1:
            raise TransferRejected(f"Transfer {tx_hex} to {recipient} reverted")
        logger.info("Paid %s wei to %s in %s", amount, shorten_eth_address(recipient), tx_hex)
        return TransferRecord(recipient=recipient, amount=amount, tx_hash=tx_hex)

    def _send(self, recipient: str, amount: int) -> Any:
        w3 = self._w3
        txn = {
            "from": self.account.address,
            "to": recipient,
            "value": amount,
            "gas": TRANSFER_GAS,
            "gasPrice": self._gas_price_override or w3.eth.gas_price,
            "nonce": w3.eth.get_transaction_count(self.account.address, "pending"),
            "chainId": self.chain_id,
        }
        signed = self.account.sign_transaction(txn)
        raw = getattr(signed, "raw_transaction", None)
        if raw is None:
            raw = signed.rawTransaction
        return w3.eth.send_raw_transaction(raw)

"""
On-chain registry contract adapter.

``RegistryChain`` is the boundary the sync and proof services depend on;
``Web3RegistryChain`` implements it with web3.py. Reads are idempotent and
retried with linear backoff. Transactions are submitted exactly once: a
failure is surfaced, never retried, so a registration can't be double-sent.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TimeExhausted, Web3Exception

from config.config import ChainConfig
from errors import ChainTransactionFailed, ChainUnavailable
from zk.field import FieldElement

logger = logging.getLogger(__name__)

DEFAULT_ABI_PATH = Path(__file__).parent / "abi" / "voter_registry.json"

EVENT_VOTER_REGISTERED = "VoterRegistered"
EVENT_VOTER_REMOVED = "VoterRemoved"

TRANSIENT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    ConnectionError,
    TimeoutError,
)


@dataclass
class TransactionReceipt:
    transaction_hash: str
    block_number: int
    gas_used: int
    status: int = 1


@dataclass
class RegistryEvent:
    """VoterRegistered / VoterRemoved log entry, ordered by (block, log index)"""
    action: str
    election_id: int
    identifier: str
    block_number: int
    log_index: int
    transaction_hash: Optional[str] = None

    @property
    def sort_key(self):
        return (self.block_number, self.log_index)


class RegistryChain(ABC):
    """Operations of the on-chain voter registry used by this subsystem"""

    @abstractmethod
    def register_voter(self, election_id: int, identifier: str) -> TransactionReceipt:
        ...

    @abstractmethod
    def batch_register_voters(self, election_id: int, identifiers: Sequence[str]) -> TransactionReceipt:
        ...

    @abstractmethod
    def remove_voter(self, election_id: int, identifier: str) -> TransactionReceipt:
        ...

    @abstractmethod
    def set_merkle_root(self, election_id: int, root: FieldElement) -> TransactionReceipt:
        ...

    @abstractmethod
    def get_merkle_root(self, election_id: int) -> Optional[FieldElement]:
        """Published root, or None when no root has been set"""
        ...

    @abstractmethod
    def is_registered_voter(self, election_id: int, identifier: str) -> bool:
        ...

    @abstractmethod
    def registry_events(self, election_id: int) -> List[RegistryEvent]:
        """Registration and removal events for one election, in chain order"""
        ...


def load_contract_abi(abi_path: Optional[Path]) -> List[Dict[str, Any]]:
    """ABI from a Hardhat artifact, falling back to the bundled registry ABI"""
    candidates = [Path(abi_path)] if abi_path else []
    candidates.append(DEFAULT_ABI_PATH)

    for path in candidates:
        if not path.exists():
            continue
        with open(path, 'r') as f:
            parsed = json.load(f)
        abi = parsed if isinstance(parsed, list) else parsed.get('abi')
        if not abi:
            raise ValueError(f"ABI in {path} is not in a recognized format")
        if path != candidates[0]:
            logger.warning(f"Contract artifact not found at {abi_path}, using bundled ABI {path}")
        return abi

    raise FileNotFoundError(f"No contract ABI found at {abi_path} or {DEFAULT_ABI_PATH}")


def _bytes32(identifier: str) -> bytes:
    return bytes.fromhex(identifier[2:] if identifier.startswith('0x') else identifier)


def _revert_reason(error: Exception) -> str:
    return getattr(error, 'message', None) or str(error)


class Web3RegistryChain(RegistryChain):
    """web3.py implementation against the VotingSystem registry contract"""

    def __init__(self, config: ChainConfig, web3: Optional[Web3] = None, contract=None):
        self.config = config

        if web3 is None:
            web3 = Web3(Web3.HTTPProvider(
                config.rpc_url, request_kwargs={'timeout': config.request_timeout}))
        self.web3 = web3

        if contract is None:
            if not config.contract_address:
                raise ValueError("Registry contract address is not configured")
            abi = load_contract_abi(config.abi_path)
            contract = self.web3.eth.contract(
                address=Web3.to_checksum_address(config.contract_address), abi=abi)
        self.contract = contract

        self.account = None
        if config.operator_private_key:
            self.account = self.web3.eth.account.from_key(config.operator_private_key)

        self._event_names = {
            item.get('name') for item in (getattr(contract, 'abi', None) or [])
            if item.get('type') == 'event'
        }

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def ensure_connected(self):
        if not self._read("connectivity check", self.web3.is_connected):
            raise ChainUnavailable(f"Cannot reach Ethereum node at {self.config.rpc_url}")

    def _sender(self) -> str:
        if self.account is not None:
            return self.account.address
        if self.web3.eth.default_account:
            return self.web3.eth.default_account
        accounts = self._read("account lookup", lambda: self.web3.eth.accounts)
        if not accounts:
            raise ChainTransactionFailed("No operator account available to sign transactions")
        return accounts[0]

    # ------------------------------------------------------------------
    # Reads (idempotent, retried)
    # ------------------------------------------------------------------

    def _read(self, description: str, fn: Callable[[], Any]) -> Any:
        attempts = max(1, self.config.read_retries)
        for attempt in range(attempts):
            try:
                return fn()
            except ContractLogicError as e:
                raise ChainTransactionFailed(
                    f"{description} reverted", revert_reason=_revert_reason(e)) from e
            except TRANSIENT_ERRORS as e:
                if attempt < attempts - 1:
                    logger.warning(
                        f"{description} failed (attempt {attempt + 1}/{attempts}): {e}")
                    time.sleep(self.config.retry_backoff * (attempt + 1))
                else:
                    raise ChainUnavailable(
                        f"{description} failed after {attempts} attempts: {e}") from e
            except BadFunctionCallOutput as e:
                # no code at the address or an ABI that does not match it
                raise ChainTransactionFailed(
                    f"{description} returned no decodable output: {e}") from e
            except Web3Exception as e:
                raise ChainUnavailable(f"{description} failed: {e}") from e

    def get_merkle_root(self, election_id: int) -> Optional[FieldElement]:
        raw = self._read(
            f"getMerkleRoot({election_id})",
            lambda: self.contract.functions.getMerkleRoot(election_id).call())
        root = FieldElement.from_bytes(bytes(raw))
        return None if root.value == 0 else root

    def is_registered_voter(self, election_id: int, identifier: str) -> bool:
        return bool(self._read(
            f"isRegisteredVoter({election_id})",
            lambda: self.contract.functions.isRegisteredVoter(
                election_id, _bytes32(identifier)).call()))

    def registry_events(self, election_id: int) -> List[RegistryEvent]:
        events: List[RegistryEvent] = []
        for name, action in ((EVENT_VOTER_REGISTERED, 'registered'),
                             (EVENT_VOTER_REMOVED, 'removed')):
            if self._event_names and name not in self._event_names:
                continue
            event_type = getattr(self.contract.events, name)
            logs = self._read(
                f"{name} logs",
                lambda: event_type().get_logs(from_block=self.config.from_block, to_block='latest'))
            for log in logs:
                args = log['args']
                if int(args['electionId']) != election_id:
                    continue
                events.append(RegistryEvent(
                    action=action,
                    election_id=election_id,
                    identifier='0x' + bytes(args['voterIdentifier']).hex(),
                    block_number=log['blockNumber'],
                    log_index=log['logIndex'],
                    transaction_hash=Web3.to_hex(log['transactionHash']),
                ))
        events.sort(key=lambda event: event.sort_key)
        return events

    # ------------------------------------------------------------------
    # Transactions (submitted once, never retried)
    # ------------------------------------------------------------------

    def _transact(self, description: str, contract_call) -> TransactionReceipt:
        tx_hash = None
        try:
            sender = self._sender()
            if self.account is not None:
                tx = contract_call.build_transaction({
                    'from': sender,
                    'nonce': self.web3.eth.get_transaction_count(sender, 'pending'),
                })
                signed = self.account.sign_transaction(tx)
                tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
            else:
                tx_hash = contract_call.transact({'from': sender})
            logger.info(f"{description} sent: {Web3.to_hex(tx_hash)}. Waiting for confirmation...")
            receipt = self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.config.receipt_timeout)
        except ContractLogicError as e:
            reason = _revert_reason(e)
            logger.error(f"{description} reverted: {reason}")
            raise ChainTransactionFailed(
                f"{description} reverted", revert_reason=reason,
                transaction_hash=Web3.to_hex(tx_hash) if tx_hash else None) from e
        except TimeExhausted as e:
            raise ChainUnavailable(
                f"{description} sent as {Web3.to_hex(tx_hash)} but not confirmed within "
                f"{self.config.receipt_timeout}s; reconcile before resubmitting",
                transaction_hash=Web3.to_hex(tx_hash)) from e
        except TRANSIENT_ERRORS as e:
            raise ChainUnavailable(f"{description} could not reach the node: {e}") from e
        except (ValueError, Web3Exception) as e:
            # node-side rejection (nonce, funds, RPC error)
            raise ChainTransactionFailed(
                f"{description} rejected by node", revert_reason=str(e)) from e

        tx_hex = Web3.to_hex(receipt['transactionHash'])
        if receipt['status'] != 1:
            raise ChainTransactionFailed(
                f"{description} reverted in block {receipt['blockNumber']}",
                revert_reason="transaction status 0", transaction_hash=tx_hex)

        logger.info(
            f"{description} confirmed. Block: {receipt['blockNumber']}, Gas used: {receipt['gasUsed']}")
        return TransactionReceipt(
            transaction_hash=tx_hex,
            block_number=receipt['blockNumber'],
            gas_used=receipt['gasUsed'],
            status=receipt['status'],
        )

    def register_voter(self, election_id: int, identifier: str) -> TransactionReceipt:
        return self._transact(
            f"registerVoter({election_id})",
            self.contract.functions.registerVoter(election_id, _bytes32(identifier)))

    def batch_register_voters(self, election_id: int, identifiers: Sequence[str]) -> TransactionReceipt:
        return self._transact(
            f"batchRegisterVoters({election_id}, n={len(identifiers)})",
            self.contract.functions.batchRegisterVoters(
                election_id, [_bytes32(identifier) for identifier in identifiers]))

    def remove_voter(self, election_id: int, identifier: str) -> TransactionReceipt:
        return self._transact(
            f"removeVoter({election_id})",
            self.contract.functions.removeVoter(election_id, _bytes32(identifier)))

    def set_merkle_root(self, election_id: int, root: FieldElement) -> TransactionReceipt:
        return self._transact(
            f"setMerkleRoot({election_id}, {root.to_hex()})",
            self.contract.functions.setMerkleRoot(election_id, root.to_bytes()))

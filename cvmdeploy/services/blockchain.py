"""
Blockchain Registrar

Client-side calls against the KMS identity registry and per-app identity
contracts: registration lookups, app registration, factory deployment and
compose hash commits.
"""

from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import Web3Exception
from web3.logs import DISCARD

from cvmdeploy.constants import (
    APP_AUTH_ABI,
    DEFAULT_RECEIPT_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    KMS_AUTH_ABI,
    MIN_COMMIT_BALANCE_ETH,
    ZERO_ADDRESS,
)
from cvmdeploy.exceptions import ChainError, ValidationError
from cvmdeploy.models.results import AppIdentity, ComposeHashCommit
from cvmdeploy.utils import ensure_hex_prefix, strip_hex_prefix

CHAIN_ERRORS = (Web3Exception, requests.exceptions.RequestException, ValueError)


def to_bytes32(value: Optional[str], label: str) -> bytes:
    """
    Decode a 32-byte hex value; empty means the zero hash.

    Raises:
        ValidationError: If the value is not 32 bytes of hex
    """
    if not value:
        return bytes(32)
    try:
        raw = bytes.fromhex(strip_hex_prefix(value))
    except ValueError as e:
        raise ValidationError(f"{label} is not valid hex: {value}") from e
    if len(raw) != 32:
        raise ValidationError(f"{label} must be 32 bytes, got {len(raw)}")
    return raw


def to_address(value: str, label: str = "Address") -> str:
    """
    Checksum a 20-byte hex address.

    Raises:
        ValidationError: If the value is not an address
    """
    if not value or not Web3.is_address(ensure_hex_prefix(value)):
        raise ValidationError(f"{label} is not a valid address: {value}")
    return Web3.to_checksum_address(ensure_hex_prefix(value))


class BlockchainRegistrar:
    """
    Signs and submits registry transactions with a local account.

    Every write follows the same path: build with the pending nonce, sign
    locally, send raw, wait for the receipt, reject reverts, then decode
    the expected event.
    """

    def __init__(
        self,
        web3: Web3,
        account: Any,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
    ):
        """
        Initialize registrar.

        Args:
            web3: Connected Web3 instance
            account: eth_account LocalAccount used for signing
            receipt_timeout: Seconds to wait for each transaction receipt
        """
        self.web3 = web3
        self.account = account
        self.receipt_timeout = receipt_timeout

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        private_key: str,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
    ) -> "BlockchainRegistrar":
        """
        Connect to an RPC endpoint with a signing key.

        Raises:
            ValidationError: If the private key is malformed
            ChainError: If the RPC endpoint is unreachable
        """
        try:
            account = Account.from_key(ensure_hex_prefix(private_key))
        except (ValueError, TypeError):
            # Key material must never reach error output
            raise ValidationError("Private key is not a valid secp256k1 key") from None

        web3 = Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": DEFAULT_REQUEST_TIMEOUT})
        )
        try:
            connected = web3.is_connected()
        except CHAIN_ERRORS as e:
            raise ChainError(f"Cannot reach RPC at {rpc_url}", context=str(e)) from e
        if not connected:
            raise ChainError(f"Cannot reach RPC at {rpc_url}")
        return cls(web3, account, receipt_timeout=receipt_timeout)

    @property
    def address(self) -> str:
        return self.account.address

    def is_registered(
        self, registry_address: str, identity_address: str
    ) -> Tuple[bool, str]:
        """
        Read the registration status of an app identity.

        Returns:
            (is_registered, controller_address)
        """
        registry = self._registry(registry_address)
        try:
            registered, controller = registry.functions.apps(
                to_address(identity_address, "App ID")
            ).call()
        except CHAIN_ERRORS as e:
            raise ChainError(
                "Registration lookup failed",
                context=f"registry={registry_address} app={identity_address}: {e}",
            ) from e
        return bool(registered), controller or ZERO_ADDRESS

    def register_existing(
        self, registry_address: str, identity_address: str
    ) -> AppIdentity:
        """
        Register a pre-deployed app identity contract with the registry.

        Raises:
            ChainError: On RPC failure, revert or missing AppRegistered event
        """
        registry = self._registry(registry_address)
        identity = to_address(identity_address, "App ID")
        receipt, tx_hash = self._send(
            "registerApp", registry.functions.registerApp(identity)
        )
        args = self._decode_event(registry, "AppRegistered", receipt)
        return AppIdentity(
            app_id=args["appId"],
            controller_address=identity,
            deployer_address=self.address,
            transaction_hash=tx_hash,
        )

    def deploy_and_register_default(
        self,
        registry_address: str,
        deployer_address: str,
        device_id: Optional[str],
        compose_hash: str,
    ) -> AppIdentity:
        """
        Deploy the default app identity contract through the registry factory.

        Upgrades stay enabled and any device is allowed; the device id and
        compose hash seed the new contract.

        Raises:
            ChainError: On RPC failure, revert or missing AppDeployedViaFactory event
        """
        registry = self._registry(registry_address)
        call = registry.functions.deployAndRegisterApp(
            to_address(deployer_address, "Deployer"),
            False,
            True,
            to_bytes32(device_id, "Device ID"),
            to_bytes32(compose_hash, "Compose hash"),
        )
        receipt, tx_hash = self._send("deployAndRegisterApp", call)
        args = self._decode_event(registry, "AppDeployedViaFactory", receipt)
        return AppIdentity(
            app_id=args["appId"],
            controller_address=args["proxyAddress"],
            deployer_address=args["deployer"],
            transaction_hash=tx_hash,
        )

    def commit_compose_hash(
        self,
        identity_address: str,
        compose_hash: str,
        min_balance: str = MIN_COMMIT_BALANCE_ETH,
    ) -> ComposeHashCommit:
        """
        Add a compose hash to an app identity's allow list.

        Args:
            identity_address: App identity contract
            compose_hash: 32-byte compose hash
            min_balance: Minimum signer balance in ether

        Raises:
            ChainError: On low balance, RPC failure, revert or missing event
        """
        self.ensure_balance(min_balance)
        app = self.web3.eth.contract(
            address=to_address(identity_address, "App ID"), abi=APP_AUTH_ABI
        )
        receipt, tx_hash = self._send(
            "addComposeHash",
            app.functions.addComposeHash(to_bytes32(compose_hash, "Compose hash")),
        )
        self._decode_event(app, "ComposeHashAdded", receipt)
        return ComposeHashCommit(
            identity_address=identity_address,
            compose_hash=ensure_hex_prefix(compose_hash),
            transaction_hash=tx_hash,
        )

    def ensure_balance(self, min_balance: str) -> None:
        try:
            balance = self.web3.eth.get_balance(self.address)
        except CHAIN_ERRORS as e:
            raise ChainError("Balance lookup failed", context=str(e)) from e
        required = Web3.to_wei(Decimal(min_balance), "ether")
        if balance < required:
            raise ChainError(
                f"Insufficient balance for {self.address}",
                context=f"Have {Web3.from_wei(balance, 'ether')} ETH, need at least {min_balance} ETH",
            )

    def _registry(self, registry_address: str):
        return self.web3.eth.contract(
            address=to_address(registry_address, "KMS contract"), abi=KMS_AUTH_ABI
        )

    def _send(self, name: str, call) -> Tuple[Dict[str, Any], str]:
        try:
            tx = call.build_transaction(
                {
                    "from": self.address,
                    "nonce": self.web3.eth.get_transaction_count(self.address, "pending"),
                }
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except CHAIN_ERRORS as e:
            raise ChainError(f"Transaction {name} failed", context=str(e)) from e

        tx_hex = Web3.to_hex(tx_hash)
        if receipt["status"] == 0:
            raise ChainError(f"Transaction {name} reverted", context=f"tx={tx_hex}")
        return receipt, tx_hex

    @staticmethod
    def _decode_event(contract, event_name: str, receipt) -> Dict[str, Any]:
        events = getattr(contract.events, event_name)().process_receipt(
            receipt, errors=DISCARD
        )
        if not events:
            raise ChainError(
                f"Expected {event_name} event not found in receipt",
                context=f"tx={Web3.to_hex(receipt['transactionHash'])}"
                if receipt.get("transactionHash")
                else None,
            )
        return dict(events[0]["args"])

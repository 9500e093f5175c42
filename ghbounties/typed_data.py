"""
gh-bounties settlement - Typed Data

Canonical EIP-712 payloads signed by users and by the backend:

  - BurnIntent / TransferSpec under the Gateway domain (deposits into Arc)
  - Payout / Claim / Refund authorizations under the GHBounties domain

Usage:
    typed = build_payout_typed_data(chain_id, contract, bounty_id, token,
                                    recipient, amount, nonce, deadline)
    signature = sign_typed_data(typed, private_key)
    verify_typed_data_signer(typed, signature, expected_signer)
"""

import copy
import os
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import keccak

from .errors import VerificationError


BYTES32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
HEX_RE = re.compile(r"^0x([0-9a-fA-F]{2})*$")
UINT_RE = re.compile(r"^\d+$")

AUTHORIZATION_TTL = 10 * 60

GATEWAY_DOMAIN = {"name": "GatewayWallet", "version": "1"}

GATEWAY_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
]

BOUNTIES_DOMAIN_TYPE = GATEWAY_DOMAIN_TYPE + [
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

TRANSFER_SPEC_TYPE = [
    {"name": "version", "type": "string"},
    {"name": "sourceDomain", "type": "uint32"},
    {"name": "destinationDomain", "type": "uint32"},
    {"name": "sourceContract", "type": "bytes32"},
    {"name": "destinationContract", "type": "bytes32"},
    {"name": "sourceToken", "type": "bytes32"},
    {"name": "destinationToken", "type": "bytes32"},
    {"name": "sourceDepositor", "type": "bytes32"},
    {"name": "destinationRecipient", "type": "bytes32"},
    {"name": "sourceSigner", "type": "bytes32"},
    {"name": "destinationCaller", "type": "bytes32"},
    {"name": "value", "type": "uint256"},
    {"name": "salt", "type": "bytes32"},
    {"name": "hookData", "type": "bytes"},
]

BURN_INTENT_TYPE = [
    {"name": "maxBlockHeight", "type": "uint256"},
    {"name": "maxFee", "type": "uint256"},
    {"name": "spec", "type": "TransferSpec"},
]

PAYOUT_TYPE = [
    {"name": "bountyId", "type": "bytes32"},
    {"name": "token", "type": "address"},
    {"name": "recipient", "type": "address"},
    {"name": "amount", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]

CLAIM_TYPE = [
    {"name": "bountyId", "type": "bytes32"},
    {"name": "claimer", "type": "address"},
    {"name": "claimHash", "type": "bytes32"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]

REFUND_TYPE = [
    {"name": "bountyId", "type": "bytes32"},
    {"name": "token", "type": "address"},
    {"name": "funder", "type": "address"},
    {"name": "amount", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]


# =============================================================================
# BYTES32 HELPERS
# =============================================================================

def address_to_bytes32(address: str) -> str:
    """Left-pad a 20-byte address into a bytes32 slot (lower-case hex)."""
    if not ADDRESS_RE.match(address or ""):
        raise VerificationError(f"not an address: {address!r}")
    return ("0x" + "0" * 24 + address[2:]).lower()


def bytes32_to_address(value: str) -> str:
    if not BYTES32_RE.match(value or ""):
        raise VerificationError(f"not a bytes32 value: {value!r}")
    if value[2:26].strip("0"):
        raise VerificationError(f"bytes32 value does not hold an address: {value}")
    return ("0x" + value[26:]).lower()


def random_salt32() -> str:
    return "0x" + os.urandom(32).hex()


def claim_hash(metadata_uri: str) -> str:
    return "0x" + keccak(text=metadata_uri).hex()


def default_deadline(now: float = None, ttl: int = AUTHORIZATION_TTL) -> int:
    return int(now if now is not None else time.time()) + ttl


# =============================================================================
# BURN INTENT SCHEMA
# =============================================================================

def _uint(data: dict, key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool):
        raise VerificationError(f"{key} must be an unsigned integer")
    if isinstance(value, int) and value >= 0:
        return value
    if isinstance(value, str) and UINT_RE.match(value):
        return int(value)
    raise VerificationError(f"{key} must be an unsigned integer, got {value!r}")


def _b32(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not BYTES32_RE.match(value):
        raise VerificationError(f"{key} must be 32-byte hex, got {value!r}")
    return value.lower()


@dataclass
class TransferSpec:
    """Gateway transfer spec. Parties and contracts are bytes32 hex."""
    source_domain: int
    destination_domain: int
    source_contract: str
    destination_contract: str
    source_token: str
    destination_token: str
    source_depositor: str
    destination_recipient: str
    source_signer: str
    destination_caller: str
    value: int
    salt: str = field(default_factory=random_salt32)
    hook_data: str = "0x"
    version: int = 1

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "sourceDomain": self.source_domain,
            "destinationDomain": self.destination_domain,
            "sourceContract": self.source_contract,
            "destinationContract": self.destination_contract,
            "sourceToken": self.source_token,
            "destinationToken": self.destination_token,
            "sourceDepositor": self.source_depositor,
            "destinationRecipient": self.destination_recipient,
            "sourceSigner": self.source_signer,
            "destinationCaller": self.destination_caller,
            "value": str(self.value),
            "salt": self.salt,
            "hookData": self.hook_data,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TransferSpec":
        if not isinstance(data, dict):
            raise VerificationError("transfer spec must be an object")
        version = data.get("version")
        if not isinstance(version, (int, str)) or isinstance(version, bool):
            raise VerificationError(f"version must be a string or number, got {version!r}")
        hook_data = data.get("hookData", "0x")
        if not isinstance(hook_data, str) or not HEX_RE.match(hook_data):
            raise VerificationError(f"hookData must be hex, got {hook_data!r}")
        return cls(
            version=version,
            source_domain=_uint(data, "sourceDomain"),
            destination_domain=_uint(data, "destinationDomain"),
            source_contract=_b32(data, "sourceContract"),
            destination_contract=_b32(data, "destinationContract"),
            source_token=_b32(data, "sourceToken"),
            destination_token=_b32(data, "destinationToken"),
            source_depositor=_b32(data, "sourceDepositor"),
            destination_recipient=_b32(data, "destinationRecipient"),
            source_signer=_b32(data, "sourceSigner"),
            destination_caller=_b32(data, "destinationCaller"),
            value=_uint(data, "value"),
            salt=_b32(data, "salt"),
            hook_data=hook_data.lower(),
        )


@dataclass
class BurnIntent:
    max_block_height: int
    max_fee: int
    spec: TransferSpec

    def to_dict(self) -> dict:
        return {
            "maxBlockHeight": str(self.max_block_height),
            "maxFee": str(self.max_fee),
            "spec": self.spec.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BurnIntent":
        """Validate a burn intent as returned by the Gateway estimate call."""
        if not isinstance(data, dict):
            raise VerificationError("burn intent must be an object")
        return cls(
            max_block_height=_uint(data, "maxBlockHeight"),
            max_fee=_uint(data, "maxFee"),
            spec=TransferSpec.from_dict(data.get("spec")),
        )


# =============================================================================
# BUILDERS
# =============================================================================

def build_burn_intent_typed_data(burn_intent: Union[BurnIntent, dict]) -> Dict[str, Any]:
    if not isinstance(burn_intent, BurnIntent):
        burn_intent = BurnIntent.from_dict(burn_intent)
    return {
        "types": {
            "EIP712Domain": GATEWAY_DOMAIN_TYPE,
            "TransferSpec": TRANSFER_SPEC_TYPE,
            "BurnIntent": BURN_INTENT_TYPE,
        },
        "domain": dict(GATEWAY_DOMAIN),
        "primaryType": "BurnIntent",
        "message": burn_intent.to_dict(),
    }


def bounties_domain(chain_id: int, contract_address: str) -> Dict[str, Any]:
    return {
        "name": "GHBounties",
        "version": "1",
        "chainId": int(chain_id),
        "verifyingContract": contract_address,
    }


def _authorization(primary: str, fields: List[dict], chain_id: int,
                   contract_address: str, message: Dict[str, Any]) -> Dict[str, Any]:
    if not ADDRESS_RE.match(contract_address or ""):
        raise VerificationError(f"invalid verifying contract: {contract_address!r}")
    if not BYTES32_RE.match(message.get("bountyId") or ""):
        raise VerificationError(f"bountyId must be 32-byte hex, got {message.get('bountyId')!r}")
    return {
        "types": {"EIP712Domain": BOUNTIES_DOMAIN_TYPE, primary: fields},
        "domain": bounties_domain(chain_id, contract_address),
        "primaryType": primary,
        "message": message,
    }


def build_payout_typed_data(chain_id: int, contract_address: str, bounty_id: str,
                            token: str, recipient: str, amount: int, nonce: int,
                            deadline: int) -> Dict[str, Any]:
    return _authorization("Payout", PAYOUT_TYPE, chain_id, contract_address, {
        "bountyId": bounty_id,
        "token": token,
        "recipient": recipient,
        "amount": int(amount),
        "nonce": int(nonce),
        "deadline": int(deadline),
    })


def build_claim_typed_data(chain_id: int, contract_address: str, bounty_id: str,
                           claimer: str, claim_metadata_uri: str, nonce: int,
                           deadline: int) -> Dict[str, Any]:
    return _authorization("Claim", CLAIM_TYPE, chain_id, contract_address, {
        "bountyId": bounty_id,
        "claimer": claimer,
        "claimHash": claim_hash(claim_metadata_uri),
        "nonce": int(nonce),
        "deadline": int(deadline),
    })


def build_refund_typed_data(chain_id: int, contract_address: str, bounty_id: str,
                            token: str, funder: str, amount: int, nonce: int,
                            deadline: int) -> Dict[str, Any]:
    return _authorization("Refund", REFUND_TYPE, chain_id, contract_address, {
        "bountyId": bounty_id,
        "token": token,
        "funder": funder,
        "amount": int(amount),
        "nonce": int(nonce),
        "deadline": int(deadline),
    })


# =============================================================================
# SIGN / RECOVER
# =============================================================================

def _encode_value(kind: str, value: Any, types: Dict[str, list]) -> Any:
    if kind in types:
        return _encode_struct(kind, value, types)
    if kind == "string":
        return str(value)
    if kind.startswith("uint") or kind.startswith("int"):
        return int(value)
    if kind.startswith("bytes"):
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    return value


def _encode_struct(name: str, message: Dict[str, Any], types: Dict[str, list]) -> Dict[str, Any]:
    return {f["name"]: _encode_value(f["type"], message[f["name"]], types)
            for f in types[name]}


def signable_message(typed: Dict[str, Any]) -> SignableMessage:
    """Encode JSON-style typed data (hex strings, decimal strings) for signing."""
    full = copy.deepcopy(typed)
    full["message"] = _encode_struct(typed["primaryType"], typed["message"], typed["types"])
    try:
        return encode_typed_data(full_message=full)
    except (KeyError, TypeError, ValueError) as e:
        raise VerificationError(f"cannot encode typed data: {e}") from e


def typed_data_digest(typed: Dict[str, Any]) -> str:
    msg = signable_message(typed)
    return "0x" + keccak(b"\x19" + msg.version + msg.header + msg.body).hex()


def sign_typed_data(typed: Dict[str, Any], private_key: str) -> str:
    signed = Account.sign_message(signable_message(typed), private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


def recover_typed_data_signer(typed: Dict[str, Any], signature: str) -> str:
    """Checksummed address that produced `signature` over `typed`."""
    if not isinstance(signature, str) or not HEX_RE.match(signature) or len(signature) != 132:
        raise VerificationError("signature must be 65 bytes of hex")
    message = signable_message(typed)
    try:
        return Account.recover_message(message, signature=signature)
    except Exception as e:
        raise VerificationError(f"unrecoverable signature: {e}") from e


def verify_typed_data_signer(typed: Dict[str, Any], signature: str, expected: str) -> str:
    """Raise VerificationError unless the signer equals `expected` (case-insensitive)."""
    signer = recover_typed_data_signer(typed, signature)
    if signer.lower() != (expected or "").lower():
        raise VerificationError(f"signature signer {signer} does not match {expected}")
    return signer

"""
EIP-712 typed-data hashing for proof requests.

The request digest is computed over a canonical re-encoding of the announced
request, so the result depends only on the field values and the market
domain, never on how the fields were ordered in the inbound JSON.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_bytes

from .models import ProofRequest, input_type_code, predicate_type_code


# Mirrors the struct definitions of BoundlessMarketLib.sol
EIP712_TYPES: Dict[str, List[Dict[str, str]]] = {
    "ProofRequest": [
        {"name": "id", "type": "uint256"},
        {"name": "requirements", "type": "Requirements"},
        {"name": "imageUrl", "type": "string"},
        {"name": "input", "type": "Input"},
        {"name": "offer", "type": "Offer"},
    ],
    "Requirements": [
        {"name": "imageId", "type": "bytes32"},
        {"name": "predicate", "type": "Predicate"},
    ],
    "Predicate": [
        {"name": "predicateType", "type": "uint8"},
        {"name": "data", "type": "bytes"},
    ],
    "Input": [
        {"name": "inputType", "type": "uint8"},
        {"name": "data", "type": "bytes"},
    ],
    "Offer": [
        {"name": "minPrice", "type": "uint256"},
        {"name": "maxPrice", "type": "uint256"},
        {"name": "biddingStart", "type": "uint64"},
        {"name": "rampUpPeriod", "type": "uint32"},
        {"name": "timeout", "type": "uint32"},
        {"name": "lockStake", "type": "uint256"},
    ],
}

PRIMARY_TYPE = "ProofRequest"

_DOMAIN_FIELD_TYPES = [
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
]


@dataclass(frozen=True)
class MarketDomain:
    """EIP-712 domain of the proof market contract."""
    chain_id: int
    verifying_contract: str
    name: str = "IBoundlessMarket"
    version: str = "1"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


def _hex_bytes(value: str) -> bytes:
    return to_bytes(hexstr=value)


def canonicalize_request(request: ProofRequest) -> Dict[str, Any]:
    """Re-encode a request exactly as the ProofRequest schema lays it out."""
    return {
        "id": request.id,
        "requirements": {
            "imageId": _hex_bytes(request.requirements.image_id),
            "predicate": {
                "predicateType": predicate_type_code(request.requirements.predicate.predicate_type),
                "data": _hex_bytes(request.requirements.predicate.data),
            },
        },
        "imageUrl": request.image_url,
        "input": {
            "inputType": input_type_code(request.input.input_type),
            "data": _hex_bytes(request.input.data),
        },
        "offer": {
            "minPrice": request.offer.min_price,
            "maxPrice": request.offer.max_price,
            "biddingStart": request.offer.bidding_start,
            "rampUpPeriod": request.offer.ramp_up_period,
            "timeout": request.offer.timeout,
            "lockStake": request.offer.lock_stake,
        },
    }


def _infer_primary_type(types: Dict[str, List[Dict[str, str]]]) -> str:
    """The one struct that no other struct references."""
    referenced = {
        field["type"].rstrip("[]") for name, fields in types.items() for field in fields
    }
    roots = [name for name in types if name != "EIP712Domain" and name not in referenced]
    if len(roots) != 1:
        raise ValueError(f"Cannot infer primary type from {sorted(roots)}")
    return roots[0]


def hash_typed_data(
    domain: Dict[str, Any],
    types: Dict[str, List[Dict[str, str]]],
    message: Dict[str, Any],
    primary_type: Optional[str] = None,
) -> bytes:
    """Compute keccak256(0x19 0x01 || domainSeparator || hashStruct(message))."""
    full_types = dict(types)
    if "EIP712Domain" not in full_types:
        full_types["EIP712Domain"] = [
            {"name": name, "type": type_} for name, type_ in _DOMAIN_FIELD_TYPES if name in domain
        ]

    full_message = {
        "types": full_types,
        "domain": domain,
        "primaryType": primary_type or _infer_primary_type(types),
        "message": message,
    }

    signable = encode_typed_data(full_message=full_message)
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def compute_request_digest(request: ProofRequest, domain: MarketDomain) -> str:
    """Request digest as stored in the orders table (hex, no 0x prefix)."""
    digest = hash_typed_data(
        domain.as_dict(), EIP712_TYPES, canonicalize_request(request), primary_type=PRIMARY_TYPE
    )
    return digest.hex()

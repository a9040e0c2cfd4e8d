"""
Pydantic models for order stream frames and the persisted order record.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


PREDICATE_TYPE_PREFIX_MATCH = "PrefixMatch"
INPUT_TYPE_INLINE = "Inline"


def parse_uint(value: Any) -> int:
    """Accept JSON numbers, decimal strings and 0x-prefixed hex strings."""
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            result = int(text, 16)
        else:
            result = int(text)
    else:
        raise ValueError(f"expected integer or integer string, got {type(value).__name__}")
    if result < 0:
        raise ValueError(f"expected unsigned integer, got {result}")
    return result


def predicate_type_code(predicate_type: Any) -> int:
    """PrefixMatch is 0, every other predicate type is 1."""
    return 0 if predicate_type == PREDICATE_TYPE_PREFIX_MATCH else 1


def input_type_code(input_type: Any) -> int:
    """Inline is 0, every other input type is 1."""
    return 0 if input_type == INPUT_TYPE_INLINE else 1


def customer_address(order_id: int) -> str:
    """Customer address encoded in the upper bits of an order id.

    The low 32 bits are the customer's request index.
    """
    return f"0x{order_id >> 32:040x}"


def format_order_id(order_id: int) -> str:
    """Canonical order id representation (lowercase hex, no padding)."""
    return f"0x{order_id:x}"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Offer(_WireModel):
    """Pricing and timing terms of a proof request."""
    min_price: int = Field(..., alias="minPrice")
    max_price: int = Field(..., alias="maxPrice")
    bidding_start: int = Field(..., alias="biddingStart")
    ramp_up_period: int = Field(..., alias="rampUpPeriod")
    timeout: int
    lock_stake: int = Field(..., alias="lockStake")

    @field_validator("min_price", "max_price", "bidding_start", "ramp_up_period", "timeout", "lock_stake", mode="before")
    @classmethod
    def validate_uint(cls, v):
        return parse_uint(v)


class Input(_WireModel):
    input_type: str = Field(..., alias="inputType")
    data: str


class Predicate(_WireModel):
    predicate_type: str = Field(..., alias="predicateType")
    data: str


class Requirements(_WireModel):
    image_id: str = Field(..., alias="imageId")
    predicate: Predicate


class ProofRequest(_WireModel):
    """A proof request as announced on the order stream."""
    id: int
    requirements: Requirements
    image_url: str = Field(..., alias="imageUrl")
    input: Input
    offer: Offer

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v):
        return parse_uint(v)

    @property
    def order_id(self) -> str:
        return format_order_id(self.id)

    @property
    def customer_addr(self) -> str:
        return customer_address(self.id)


class Order(_WireModel):
    request: ProofRequest
    # Inbound signatures are not verified by this client.
    signature: Optional[Any] = None


class OrderEnvelope(_WireModel):
    """Top-level frame carrying an order announcement."""
    order: Order
    created_at: Optional[datetime] = None


class PersistedOrder(BaseModel):
    """One row of the orders table.

    Full-width integers are kept as decimal strings up to the store boundary.
    """
    order_id: str
    chain: str
    customer_addr: str
    state: str = "SUBMITTED"
    min_price: str
    max_price: str
    bidding_start: str
    timeout: str
    lock_stake: str
    ramp_up_period: str
    img_id: str
    img_url: str
    input_type: int
    input_data: str
    predicate_type: int
    predicate_data: str
    timestamp: Optional[datetime] = None
    created_at: Optional[datetime] = None
    request_digest: str
    source: str = "OFFCHAIN"


PERSISTED_ORDER_COLUMNS = tuple(PersistedOrder.model_fields.keys())


class ConnectionState(str, Enum):
    """Lifecycle of the stream connection. CLOSED is terminal."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"

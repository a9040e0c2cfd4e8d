"""Shared fixtures for order stream tests."""

import copy

import pytest

from orderstream.eip712 import MarketDomain


TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_CONTRACT = "0x01e4130C977b39aaa28A744b8D3dEB23a5297654"


class MockAsyncContextManager:
    """Helper class for mocking async context managers."""

    def __init__(self, return_value):
        self.return_value = return_value

    async def __aenter__(self):
        return self.return_value

    async def __aexit__(self, *args):
        pass


@pytest.fixture
def market_domain():
    return MarketDomain(chain_id=11155111, verifying_contract=TEST_CONTRACT)


@pytest.fixture
def make_request():
    """Factory for proof request payloads as they appear on the wire."""
    base = {
        "id": hex((0xABCDEF << 32) | 7),
        "requirements": {
            "imageId": "0x" + "ab" * 32,
            "predicate": {
                "predicateType": "PrefixMatch",
                "data": "0x" + "cd" * 32,
            },
        },
        "imageUrl": "https://example.com/guest.bin",
        "input": {
            "inputType": "Inline",
            "data": "0x0102030405",
        },
        "offer": {
            "minPrice": "0x38d7ea4c68000",
            "maxPrice": "2000000000000000",
            "biddingStart": 1736000000,
            "rampUpPeriod": 60,
            "timeout": 600,
            "lockStake": "0x0",
        },
    }

    def _make(order_id=None, **offer_overrides):
        request = copy.deepcopy(base)
        if order_id is not None:
            request["id"] = hex(order_id) if isinstance(order_id, int) else order_id
        request["offer"].update(offer_overrides)
        return request

    return _make


@pytest.fixture
def make_frame(make_request):
    """Factory for complete order frames."""
    def _make(order_id=None, created_at="2025-01-05T12:00:00.123456Z", **offer_overrides):
        return {
            "order": {
                "request": make_request(order_id, **offer_overrides),
                "signature": {"r": "0x00", "s": "0x00", "yParity": "0x0"},
            },
            "created_at": created_at,
        }

    return _make

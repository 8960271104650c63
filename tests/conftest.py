"""
Shared fixtures: one fake deployment, its deriver, and an issuer key.
"""

import pytest

from helpers.fakes import FakeRpc, FakeSender, addr
from spoutrelay.core.crypto import Ed25519Signer
from spoutrelay.core.models import OrderEvent, OrderSide
from spoutrelay.core.pda import AddressDeriver
from spoutrelay.settlement.orchestrator import Deployment, SettlementOrchestrator


@pytest.fixture
def issuer():
    return Ed25519Signer.generate()


@pytest.fixture
def deployment():
    return Deployment(
        order_program= addr("orders-program"),
        config=        addr("config"),
        asset_mint=    addr("lqd-mint"),
        usdc_mint=     addr("usdc-mint"),
        usdc_decimals= 6,
    )


@pytest.fixture
def deriver():
    return AddressDeriver(
        credential=        addr("credential"),
        schema=            addr("schema"),
        authority_program= addr("spout-program"),
    )


@pytest.fixture
def rpc():
    return FakeRpc()


@pytest.fixture
def sender(issuer):
    return FakeSender(issuer.address)


@pytest.fixture
def orchestrator(rpc, sender, deriver, deployment):
    return SettlementOrchestrator(rpc, sender, deriver, deployment)


@pytest.fixture
def user():
    return addr("user-U")


@pytest.fixture
def buy_event(user):
    return OrderEvent(
        side=             OrderSide.BUY,
        user=             user,
        ticker=           "LQD",
        usdc_amount=      100_000000,
        asset_amount=     1_000000,
        price=            100_000000,
        oracle_timestamp= 1_700_000_000,
        signature=        "buySig111",
        log_index=        0,
    )


@pytest.fixture
def sell_event(user):
    return OrderEvent(
        side=             OrderSide.SELL,
        user=             user,
        ticker=           "LQD",
        usdc_amount=      56_000000,
        asset_amount=     500000,
        price=            112_000000,
        oracle_timestamp= 1_700_000_100,
        signature=        "sellSig222",
        log_index=        0,
    )

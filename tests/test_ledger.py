import logging

import pytest

from offsetsim.config import ScenarioConfig
from offsetsim.core import IneligibleRouteError, InsufficientFundsError, InsufficientLedgerBalanceError, parse_ether
from offsetsim.factory import DeploymentFactory


def test_deposit_then_withdraw_restores_wallet(chain, helper, alice, usdc, bct):
    for token, amount in ((usdc, 123_456_789), (bct, parse_ether("2.5"))):
        before = token.balance_of(alice)
        token.approve(alice, helper.address, amount)

        helper.deposit(alice, token.address, amount)
        assert helper.balances(alice, token.address) == amount
        helper.withdraw(alice, token.address, amount)

        assert token.balance_of(alice) == before
        assert helper.balances(alice, token.address) == 0


def test_deposit_and_withdraw_emit_events(chain, helper, alice, bct):
    bct.approve(alice, helper.address, 10)
    deposit = chain.transact(alice, helper.deposit, bct.address, 10)
    withdraw = chain.transact(alice, helper.withdraw, bct.address, 4)

    assert deposit.event("Deposited").args == {"who": alice, "erc20": bct.address, "amount": 10}
    assert withdraw.event("Withdrawn").args == {"who": alice, "erc20": bct.address, "amount": 4}
    assert helper.balances(alice, bct.address) == 6


def test_withdraw_more_than_deposited(helper, alice, bct):
    bct.approve(alice, helper.address, 10)
    helper.deposit(alice, bct.address, 10)
    with pytest.raises(InsufficientLedgerBalanceError, match="Insufficient balance"):
        helper.withdraw(alice, bct.address, 11)
    assert helper.balances(alice, bct.address) == 10


def test_deposit_requires_allowance(helper, alice, usdc):
    with pytest.raises(InsufficientFundsError, match="ERC20: insufficient allowance"):
        helper.deposit(alice, usdc.address, 1)


def test_deposit_rejects_unknown_tokens(world, helper, alice):
    tco2 = world.vintages["BCT"][0]
    with pytest.raises(IneligibleRouteError, match="Token not accepted"):
        helper.deposit(alice, tco2.address, 1)


def test_ledger_is_keyed_per_user(helper, alice, bob, bct, nct):
    bct.approve(alice, helper.address, 5)
    nct.approve(bob, helper.address, 7)
    bct.approve(bob, helper.address, 3)
    helper.deposit(alice, bct.address, 5)
    helper.deposit(bob, nct.address, 7)
    helper.deposit(bob, bct.address, 3)

    assert helper.ledger_of(alice) == {bct.address: 5}
    assert helper.ledger_of(bob) == {nct.address: 7, bct.address: 3}
    assert helper.ledger_total(bct.address) == 8
    assert helper.ledger_total(bct.address) <= bct.balance_of(helper.address)


def test_debug_ledger_logs_changes(caplog):
    factory = DeploymentFactory(ScenarioConfig(users=0, debug_ledger=True))
    world = factory.build()
    user = factory.fund_user(world, label="carol")
    bct = world.pools["BCT"]
    bct.approve(user, world.helper.address, 1)

    with caplog.at_level(logging.DEBUG, logger="offsetsim.helper"):
        world.helper.deposit(user, bct.address, 1)

    messages = [r.getMessage() for r in caplog.records if r.name == "offsetsim.helper"]
    assert any(m.startswith("[LEDGER]") and "action=deposit" in m for m in messages)


def test_zero_amounts_leave_no_ledger_entry(helper, alice, bct):
    bct.approve(alice, helper.address, 0)
    helper.deposit(alice, bct.address, 0)
    assert helper.ledger_of(alice) == {}

    bct.approve(alice, helper.address, 5)
    helper.deposit(alice, bct.address, 5)
    helper.withdraw(alice, bct.address, 5)
    assert helper.ledger_of(alice) == {}

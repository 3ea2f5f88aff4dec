import pytest

from offsetsim.core import IneligibleRouteError, InsufficientFundsError, RouterError, parse_ether
from offsetsim.tokens import ERC20

UNKNOWN = "0x" + "de" * 20


def test_exact_out_token_spends_the_quoted_amount(helper, alice, usdc, bct):
    amount = parse_ether(3)
    needed = helper.calculate_needed_token_amount(usdc.address, bct.address, amount)
    usdc.approve(alice, helper.address, needed)
    before = usdc.balance_of(alice)

    spent = helper.swap_exact_out_token(alice, usdc.address, bct.address, amount)

    assert spent == needed
    assert before - usdc.balance_of(alice) == needed
    assert helper.balances(alice, bct.address) == amount
    assert bct.balance_of(helper.address) == amount
    assert usdc.balance_of(helper.address) == 0


def test_exact_out_token_repeats_at_same_price(chain, helper, alice, bob, usdc, bct):
    amount = parse_ether(2)
    spent = []
    for user in (alice, bob):
        snapshot = chain._snapshot()
        needed = helper.calculate_needed_token_amount(usdc.address, bct.address, amount)
        usdc.approve(user, helper.address, needed)
        before = usdc.balance_of(user)
        helper.swap_exact_out_token(user, usdc.address, bct.address, amount)
        spent.append(before - usdc.balance_of(user))
        assert spent[-1] == needed
        chain._restore(snapshot)
    assert spent[0] == spent[1]


def test_exact_in_token_credits_the_quote(helper, alice, weth, bct):
    amount = parse_ether("0.05")
    expected = helper.calculate_expected_pool_token_for_token(weth.address, bct.address, amount)
    weth.approve(alice, helper.address, amount)

    received = helper.swap_exact_in_token(alice, weth.address, bct.address, amount)

    assert received == expected
    assert helper.balances(alice, bct.address) == expected


def test_exact_out_eth_refunds_surplus(chain, helper, alice, nct):
    amount = parse_ether(5)
    needed = helper.calculate_needed_eth_amount(nct.address, amount)
    helper_before = chain.balance(helper.address)
    alice_before = chain.balance(alice)

    helper.swap_exact_out_eth(alice, nct.address, amount, value=needed + parse_ether(1))

    assert chain.balance(helper.address) == helper_before
    assert alice_before - chain.balance(alice) == needed
    assert helper.balances(alice, nct.address) == amount


def test_exact_in_eth_credits_the_quote(chain, helper, alice, nct):
    value = parse_ether(20)
    expected = helper.calculate_expected_pool_token_for_eth(nct.address, value)

    received = helper.swap_exact_in_eth(alice, nct.address, value=value)

    assert received == expected
    assert helper.balances(alice, nct.address) == expected
    assert chain.balance(helper.address) == 0


def test_too_little_native_coin_reverts_and_rolls_back(chain, helper, alice, nct):
    amount = parse_ether(5)
    needed = helper.calculate_needed_eth_amount(nct.address, amount)
    before = chain.balance(alice)

    receipt = chain.transact(alice, helper.swap_exact_out_eth, nct.address, amount, value=needed - 1)

    assert not receipt.ok
    assert receipt.revert_reason == "UniswapV2Router: EXCESSIVE_INPUT_AMOUNT"
    assert chain.balance(alice) == before
    assert helper.balances(alice, nct.address) == 0


def test_unapproved_swap_surfaces_allowance_error(helper, alice, usdc, bct):
    with pytest.raises(InsufficientFundsError, match="ERC20: insufficient allowance"):
        helper.swap_exact_in_token(alice, usdc.address, bct.address, 10 ** 6)


def test_unfunded_swap_surfaces_balance_error(world, chain, helper, usdc, bct):
    broke = chain.new_account(label="broke")
    usdc.approve(broke, helper.address, 10 ** 6)
    with pytest.raises(InsufficientFundsError, match="ERC20: transfer amount exceeds balance"):
        helper.swap_exact_in_token(broke, usdc.address, bct.address, 10 ** 6)


def test_ineligible_source_and_pool(world, helper, alice, usdc, bct):
    with pytest.raises(IneligibleRouteError, match="Token not swappable"):
        helper.calculate_needed_token_amount(UNKNOWN, bct.address, 1)
    with pytest.raises(IneligibleRouteError, match="Token not redeemable"):
        helper.calculate_expected_pool_token_for_token(usdc.address, usdc.address, 1)
    with pytest.raises(IneligibleRouteError, match="Token not swappable"):
        helper.swap_exact_in_token(alice, bct.address, world.pools["NCT"].address, 1)


def test_quote_beyond_liquidity_reverts(world, helper, usdc, bct):
    pair = world.router.pair_for(usdc.address, bct.address)
    with pytest.raises(RouterError, match="INSUFFICIENT_LIQUIDITY"):
        helper.calculate_needed_token_amount(usdc.address, bct.address, bct.balance_of(pair.address))


def test_newly_added_path_becomes_swappable(world, chain, helper, alice, usdc, bct):
    usdt = chain.deploy(ERC20("Tether", "USDT", 6, owner=world.deployer))
    pair = world.router.create_pair(usdt.address, usdc.address)
    usdt.mint(world.deployer, pair.address, 10 ** 12)
    usdc.mint(world.deployer, pair.address, 10 ** 12)
    pair.sync(world.deployer)
    usdt.mint(world.deployer, alice, 10 ** 8)

    helper.add_path(world.deployer, "USDT", [usdt.address, usdc.address])
    expected = helper.calculate_expected_pool_token_for_token(usdt.address, bct.address, 10 ** 7)
    usdt.approve(alice, helper.address, 10 ** 7)

    assert helper.swap_exact_in_token(alice, usdt.address, bct.address, 10 ** 7) == expected

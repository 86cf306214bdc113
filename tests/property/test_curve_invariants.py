from hypothesis import assume, given, strategies as st

from bondex.domain.curve_math import quote_buy, quote_sell
from bondex.domain.models import ReserveState


reserves = st.builds(
    ReserveState,
    virtual_sol_reserves=st.integers(min_value=1_000_000, max_value=10**14),
    virtual_token_reserves=st.integers(min_value=1_000_000, max_value=10**16),
    real_sol_reserves=st.just(0),
    real_token_reserves=st.just(0),
    complete=st.just(False),
)
lamports = st.integers(min_value=1, max_value=10**13)
slippage = st.integers(min_value=0, max_value=10_000)


@given(curve=reserves, a=lamports, b=lamports, bps=slippage)
def test_buy_output_monotonic_in_input(curve, a, b, bps):
    small, large = sorted((a, b))
    assert quote_buy(curve, small, bps).token_amount <= quote_buy(curve, large, bps).token_amount


@given(curve=reserves, s=lamports, bps=slippage)
def test_buy_output_bounded_and_limit_covers_input(curve, s, bps):
    params = quote_buy(curve, s, bps)
    assert 0 < params.token_amount <= curve.virtual_token_reserves
    assert params.limit_amount >= s


@given(curve=reserves, t=st.integers(min_value=1, max_value=10**16), bps=slippage)
def test_sell_output_bounded(curve, t, bps):
    params = quote_sell(curve, t, bps)
    assert 0 < params.sol_amount <= curve.virtual_sol_reserves
    assert params.limit_amount <= params.sol_amount


@given(curve=reserves, s=lamports)
def test_buy_then_sell_returns_input_within_rounding(curve, s):
    bought = quote_buy(curve, s, 0)
    assume(bought.token_amount < curve.virtual_token_reserves)
    after = ReserveState(
        virtual_sol_reserves=curve.virtual_sol_reserves + s,
        virtual_token_reserves=curve.virtual_token_reserves - bought.token_amount,
        real_sol_reserves=0,
        real_token_reserves=0,
        complete=False,
    )
    sold = quote_sell(after, bought.token_amount, 0)

    vs, vt = curve.virtual_sol_reserves, curve.virtual_token_reserves
    assert sold.sol_amount >= s
    # floor error is at most one token's worth of SOL plus one lamport
    assert sold.sol_amount * vt <= s * vt + vs + s + vt


@given(curve=reserves, s=lamports)
def test_buy_preserves_k_within_one_floor_step(curve, s):
    k = curve.virtual_sol_reserves * curve.virtual_token_reserves
    bought = quote_buy(curve, s, 0)

    new_sol = curve.virtual_sol_reserves + s
    post_k = new_sol * (curve.virtual_token_reserves - bought.token_amount)

    assert post_k <= k
    assert k - post_k < new_sol

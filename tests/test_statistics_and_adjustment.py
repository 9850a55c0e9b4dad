import pytest

from pricing.adjustment import MarginSettings, apply_margin
from pricing.statistics import filtered_mean, round_half_up


# ── Outlier filtering ────────────────────────────────────────────────


def test_single_price_returned_verbatim():
    result = filtered_mean([4321.0])
    assert result.value == 4321
    assert result.kept == 1


def test_outlier_beyond_two_sigma_is_dropped():
    result = filtered_mean([4000, 4100, 4200, 4300, 4400, 40000])
    assert result.value == 4200
    assert result.kept == 5
    assert result.degenerate is False


def test_deviation_exactly_two_sigma_is_kept():
    # mean 2000, population std 2000: 6000 sits exactly on the 2σ line
    result = filtered_mean([1000, 1000, 1000, 1000, 6000])
    assert result.value == 2000
    assert result.kept == 5


@pytest.mark.parametrize(
    "repeated, outlier",
    [(17753, 147384), (18938, 107229), (3263, 43547), (1, 2), (25000, 99999)],
)
def test_four_equal_prices_keep_the_boundary_point(repeated, outlier):
    # Four equal prices put the fifth exactly 2σ away, whatever the values.
    prices = [repeated] * 4 + [outlier]
    result = filtered_mean(prices)
    assert result.kept == 5
    assert result.value == round_half_up(sum(prices) / 5)


def test_deviation_just_over_two_sigma_is_dropped():
    # mean 2000, std ≈ 2236: 7000 deviates by 5000 > 4472
    result = filtered_mean([1000, 1000, 1000, 1000, 1000, 7000])
    assert result.value == 1000
    assert result.kept == 5


def test_five_point_set_cannot_exceed_two_sigma():
    # With population std the largest z-score for five points is 2.0,
    # so 40000 stays in: mean of all five is 11320.
    result = filtered_mean([4000, 4100, 4200, 4300, 40000])
    assert result.value == 11320
    assert result.kept == 5


def test_identical_prices_all_kept():
    result = filtered_mean([5000, 5000, 5000])
    assert result.value == 5000
    assert result.kept == 3


def test_all_outliers_fall_back_to_unfiltered_mean():
    result = filtered_mean([1000, 3000], sigma=0.0)
    assert result.degenerate is True
    assert result.value == 2000
    assert result.kept == 2


def test_mean_rounds_half_up():
    assert filtered_mean([1, 2]).value == 2
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2


def test_empty_prices_rejected():
    with pytest.raises(ValueError):
        filtered_mean([])


# ── Margin and service charge ────────────────────────────────────────


def test_percentage_margin():
    settings = MarginSettings(margin_type="percentage", margin_value=10, service_charge=50)
    assert apply_margin(10000, settings) == 8950


def test_fixed_margin():
    settings = MarginSettings(margin_type="fixed", margin_value=500, service_charge=50)
    assert apply_margin(10000, settings) == 9450


def test_offer_clamped_at_zero():
    assert apply_margin(40, MarginSettings()) == 0
    assert apply_margin(300, MarginSettings(margin_type="fixed", margin_value=400, service_charge=0)) == 0


def test_default_settings():
    settings = MarginSettings()
    assert settings.margin_type == "percentage"
    assert settings.margin_value == 10.0
    assert settings.service_charge == 50.0


def test_unknown_margin_type_rejected():
    with pytest.raises(ValueError):
        MarginSettings(margin_type="bogus")  # type: ignore[arg-type]

import pytest

from pricing.vin_tables import (
    MAKE_CODES,
    VIN_YEAR_MAP,
    WMI_TO_MAKE,
    candidate_years,
    decode_make,
    normalize_make_hint,
    resolve_target_year,
)


def _vin_with_year_char(char: str) -> str:
    return f"1HGCM826X{char}1234567"


# ── Year disambiguation ──────────────────────────────────────────────


def test_year_char_a_resolves_to_2010_for_recent_submission():
    assert resolve_target_year(_vin_with_year_char("A"), 2015) == 2010


def test_year_char_a_resolves_to_1980_for_old_submission():
    assert resolve_target_year(_vin_with_year_char("A"), 1985) == 1980


def test_year_char_is_case_insensitive():
    assert resolve_target_year(_vin_with_year_char("a"), 2012) == 2010


def test_year_tie_prefers_later_year():
    # 1995 is 15 years from both 1980 and 2010
    assert resolve_target_year(_vin_with_year_char("A"), 1995) == 2010


def test_unrecognized_year_char_keeps_submitted_year():
    # I, O, Q, U, Z and 0 are never used as year codes
    for char in "IOQUZ0":
        assert resolve_target_year(_vin_with_year_char(char), 2017) == 2017


def test_short_vin_keeps_submitted_year():
    assert candidate_years("1HGCM826") == ()
    assert resolve_target_year("1HGCM826", 2004) == 2004


def test_every_year_char_has_one_or_two_candidates():
    assert len(VIN_YEAR_MAP) == 30
    for years in VIN_YEAR_MAP.values():
        assert 1 <= len(years) <= 2
        assert all(later - earlier == 30 for earlier, later in zip(years, years[1:]))


# ── Make decoding ────────────────────────────────────────────────────


def test_decode_make_from_wmi():
    assert decode_make("1HGCM82633A123456") == "HOND"
    assert decode_make("jtdbe32k123456789") == "TOYT"
    assert decode_make("WBA3A5C51CF256789") == "BMW"


def test_decode_make_unknown_or_short():
    assert decode_make("XYZABC99A1B234567") is None
    assert decode_make("1H") is None


def test_ford_wmi_range():
    assert all(WMI_TO_MAKE[f"1F{c}"] == "FORD" for c in "ABCDEFGHJKLMNPRSTUVWXYZ")
    assert "1FI" not in WMI_TO_MAKE


def test_tables_are_read_only():
    with pytest.raises(TypeError):
        WMI_TO_MAKE["XXX"] = "NOPE"  # type: ignore[index]
    with pytest.raises(TypeError):
        VIN_YEAR_MAP["Z"] = (2000,)  # type: ignore[index]


# ── Make hints ───────────────────────────────────────────────────────


def test_normalize_make_hint_accepts_codes_and_names():
    assert normalize_make_hint("HOND") == "HOND"
    assert normalize_make_hint("Honda") == "HOND"
    assert normalize_make_hint("  mercedes-benz ") == "MERZ"
    assert normalize_make_hint("Land   Rover") == "LAND"


def test_normalize_make_hint_unknown():
    assert normalize_make_hint(None) is None
    assert normalize_make_hint("") is None
    assert normalize_make_hint("Yugo") is None


def test_alias_targets_are_known_codes():
    from pricing.vin_tables import MAKE_NAME_ALIASES

    assert set(MAKE_NAME_ALIASES.values()) <= MAKE_CODES

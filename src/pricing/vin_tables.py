from __future__ import annotations

from types import MappingProxyType
from typing import Mapping


# 10th VIN character -> candidate model years. Codes repeat every 30 years.
VIN_YEAR_MAP: Mapping[str, tuple[int, ...]] = MappingProxyType({
    "A": (1980, 2010), "B": (1981, 2011), "C": (1982, 2012), "D": (1983, 2013),
    "E": (1984, 2014), "F": (1985, 2015), "G": (1986, 2016), "H": (1987, 2017),
    "J": (1988, 2018), "K": (1989, 2019), "L": (1990, 2020), "M": (1991, 2021),
    "N": (1992, 2022), "P": (1993, 2023), "R": (1994, 2024), "S": (1995, 2025),
    "T": (1996, 2026), "V": (1997, 2027), "W": (1998, 2028), "X": (1999, 2029),
    "Y": (2000, 2030), "1": (2001, 2031), "2": (2002, 2032), "3": (2003, 2033),
    "4": (2004, 2034), "5": (2005, 2035), "6": (2006, 2036), "7": (2007, 2037),
    "8": (2008, 2038), "9": (2009, 2039),
})


def _expand(make: str, *wmis: str) -> dict[str, str]:
    return {wmi: make for wmi in wmis}


# World Manufacturer Identifier -> make code used by the auction feed.
WMI_TO_MAKE: Mapping[str, str] = MappingProxyType({
    **_expand("BMW", "WBA", "WBS", "WBY"),
    **_expand("MERZ", "WDD", "WDF", "WDC"),
    **_expand("AUDI", "WAU", "WA1"),
    **_expand("VOLK", "WVW", "WV1", "WV2"),
    **_expand("PORS", "WP0", "WP1"),
    **_expand("FORD", *(f"1F{c}" for c in "ABCDEFGHJKLMNPRSTUVWXYZ")),
    **_expand("CHEV", "1G1", "1GC", "1GD", "1GE", "1GH", "1GK", "1GM", "1GN", "1GW", "1GX", "1GZ"),
    **_expand("PONT", "1G2", "1GP", "1GR", "1GS"),
    **_expand("OLDSM", "1G3"),
    **_expand("BUIC", "1G4"),
    **_expand("CADI", "1G6", "1GY"),
    **_expand("GMC", "1GT", "1GU"),
    **_expand("DODS", "1C3", "1C6", "2C3", "2C7"),
    **_expand("JEEP", "1C4", "1C7"),
    **_expand("CHRYS", "1C8", "2C4", "2C8"),
    **_expand(
        "TOYT",
        "4T1", "4T3", "4T4", "5TD", "5TF", "5TJ", "JT2", "JT3", "JT4", "JT6", "JT7", "JT8",
        "JTA", "JTB", "JTC", "JTD", "JTE", "JTF", "JTG", "JTH", "JTJ", "JTK", "JTL", "JTM", "JTN",
    ),
    **_expand("HOND", "1HG", "1HF", "2HG", "2HF", "JHM"),
    **_expand("ACUR", "19U", "JH4"),
    **_expand("NISS", "1N4", "1N6", "3N1", "3N6", "JN1", "JN6", "JN8"),
    **_expand("INFI", "JNA", "JNK", "JNR", "JNX"),
    **_expand("MAZD", "1YV", "4F2", "4F4", "JM1", "JM3", "JM7"),
    **_expand("SUBA", "4S3", "4S4", "4S6", "JF1", "JF2"),
    **_expand("MITS", "4A3", "4A4", "JA3", "JA4"),
    **_expand("HYUN", "KMH", "KMJ", "KMF"),
    **_expand("KIA", "KNA", "KND", "KNE", "KNM"),
    **_expand("LAND", "SAL", "SAT"),
    **_expand("JAGU", "SAJ"),
    **_expand("VOLV", "YV1", "YV4"),
    **_expand("TESL", "5YJ", "7SA"),
    **_expand("MINI", "WMW"),
    **_expand("GENE", "KMU"),
    **_expand("ALFA", "ZAR"),
    **_expand("MASE", "ZAM"),
    **_expand("FERR", "ZFF"),
    **_expand("LAMB", "ZHW"),
    **_expand("BENT", "SCC"),
    **_expand("ROLL", "SCA"),
})

MAKE_CODES = frozenset(WMI_TO_MAKE.values())

# Manufacturer names as picked in the make/model dropdown -> feed make code.
MAKE_NAME_ALIASES: Mapping[str, str] = MappingProxyType({
    "MERCEDES": "MERZ", "MERCEDES-BENZ": "MERZ", "MERCEDES BENZ": "MERZ",
    "VOLKSWAGEN": "VOLK", "VW": "VOLK",
    "PORSCHE": "PORS",
    "CHEVROLET": "CHEV", "CHEVY": "CHEV",
    "PONTIAC": "PONT",
    "OLDSMOBILE": "OLDSM",
    "BUICK": "BUIC",
    "CADILLAC": "CADI",
    "DODGE": "DODS", "RAM": "DODS",
    "CHRYSLER": "CHRYS",
    "TOYOTA": "TOYT", "LEXUS": "TOYT",
    "HONDA": "HOND",
    "ACURA": "ACUR",
    "NISSAN": "NISS",
    "INFINITI": "INFI",
    "MAZDA": "MAZD",
    "SUBARU": "SUBA",
    "MITSUBISHI": "MITS",
    "HYUNDAI": "HYUN",
    "LAND ROVER": "LAND", "LAND-ROVER": "LAND", "RANGE ROVER": "LAND",
    "JAGUAR": "JAGU",
    "VOLVO": "VOLV",
    "TESLA": "TESL",
    "GENESIS": "GENE",
    "ALFA ROMEO": "ALFA", "ALFA-ROMEO": "ALFA",
    "MASERATI": "MASE",
    "FERRARI": "FERR",
    "LAMBORGHINI": "LAMB",
    "BENTLEY": "BENT",
    "ROLLS-ROYCE": "ROLL", "ROLLS ROYCE": "ROLL",
})


def decode_make(vin: str) -> str | None:
    """Return the feed make code for the VIN's WMI, or None when unknown."""
    if len(vin) < 3:
        return None
    return WMI_TO_MAKE.get(vin[:3].upper())


def candidate_years(vin: str) -> tuple[int, ...]:
    if len(vin) < 10:
        return ()
    return VIN_YEAR_MAP.get(vin[9].upper(), ())


def resolve_target_year(vin: str, submitted_year: int) -> int:
    """Pick the VIN-encoded model year closest to the submitted year.

    The year character is reused every 30 years, so 'A' is either 1980 or
    2010. Exact ties go to the later year. Without a recognizable year
    character the submitted year is used unchanged.
    """
    candidates = candidate_years(vin)
    if not candidates:
        return submitted_year
    return min(candidates, key=lambda y: (abs(y - submitted_year), -y))


def normalize_make_hint(hint: str | None) -> str | None:
    if not hint:
        return None
    cleaned = " ".join(hint.strip().upper().split())
    if cleaned in MAKE_CODES:
        return cleaned
    return MAKE_NAME_ALIASES.get(cleaned)

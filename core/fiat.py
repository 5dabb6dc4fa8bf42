"""
Fiat Currency Table

The set of fiat codes the engine recognizes. Keeping the set closed avoids
misreading tokens such as ``1inch`` or ``3btc`` as conversion amounts.
"""

from typing import Dict

FIAT_NAMES: Dict[str, str] = {
    "USD": "US Dollar",
    "EUR": "Euro",
    "GBP": "British Pound",
    "JPY": "Japanese Yen",
    "CNY": "Chinese Yuan",
    "CAD": "Canadian Dollar",
    "AUD": "Australian Dollar",
    "CHF": "Swiss Franc",
    "KRW": "South Korean Won",
    "INR": "Indian Rupee",
    "BRL": "Brazilian Real",
    "RUB": "Russian Ruble",
    "TRY": "Turkish Lira",
    "ZAR": "South African Rand",
    "MXN": "Mexican Peso",
    "SGD": "Singapore Dollar",
    "HKD": "Hong Kong Dollar",
    "NOK": "Norwegian Krone",
    "SEK": "Swedish Krona",
    "DKK": "Danish Krone",
    "NZD": "New Zealand Dollar",
    "PLN": "Polish Zloty",
    "THB": "Thai Baht",
    "TWD": "New Taiwan Dollar",
    "CZK": "Czech Koruna",
    "HUF": "Hungarian Forint",
    "ILS": "Israeli Shekel",
    "PHP": "Philippine Peso",
    "MYR": "Malaysian Ringgit",
    "ARS": "Argentine Peso",
    "CLP": "Chilean Peso",
    "COP": "Colombian Peso",
    "IDR": "Indonesian Rupiah",
    "SAR": "Saudi Riyal",
    "AED": "UAE Dirham",
    "NGN": "Nigerian Naira",
    "VND": "Vietnamese Dong",
    "PKR": "Pakistani Rupee",
    "BDT": "Bangladeshi Taka",
    "EGP": "Egyptian Pound",
}

KNOWN_FIAT = frozenset(FIAT_NAMES)


def is_known_fiat(code: str) -> bool:
    """Case-insensitive membership test. ``is_known_fiat("eur") -> True``"""
    return code.strip().upper() in KNOWN_FIAT


def fiat_name(code: str) -> str:
    """Display name of a fiat code, or the code itself when unknown."""
    return FIAT_NAMES.get(code.strip().upper(), code)

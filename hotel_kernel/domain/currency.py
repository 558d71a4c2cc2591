"""Currency -- the ISO 4217 codes a property can bill in."""

from typing import ClassVar


class CurrencyRegistry:
    """Known billing currencies, keyed by ISO 4217 code."""

    _NAMES: ClassVar[dict[str, str]] = {
        "INR": "Indian Rupee",
        "USD": "US Dollar",
        "EUR": "Euro",
        "GBP": "Pound Sterling",
        "JPY": "Japanese Yen",
        "AED": "UAE Dirham",
        "AUD": "Australian Dollar",
        "BHD": "Bahraini Dinar",
        "CAD": "Canadian Dollar",
        "CHF": "Swiss Franc",
        "CNY": "Chinese Yuan",
        "HKD": "Hong Kong Dollar",
        "IDR": "Indonesian Rupiah",
        "KRW": "South Korean Won",
        "KWD": "Kuwaiti Dinar",
        "LKR": "Sri Lankan Rupee",
        "MYR": "Malaysian Ringgit",
        "NPR": "Nepalese Rupee",
        "NZD": "New Zealand Dollar",
        "OMR": "Omani Rial",
        "QAR": "Qatari Riyal",
        "SAR": "Saudi Riyal",
        "SGD": "Singapore Dollar",
        "THB": "Thai Baht",
        "ZAR": "South African Rand",
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return bool(code) and code.upper().strip() in cls._NAMES

    @classmethod
    def name_of(cls, code: str) -> str | None:
        return cls._NAMES.get(code.upper().strip()) if code else None

"""Currency -- ISO 4217 registry for the currencies invoices are issued in."""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def quantum(self) -> Decimal:
        """Smallest representable unit, used with ``Decimal.quantize``."""
        return Decimal(1).scaleb(-self.decimal_places)


class CurrencyRegistry:
    """Registry of supported ISO 4217 currencies with their minor units."""

    # GCC currencies first; the rest cover the usual trading partners.
    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        "AED": CurrencyInfo("AED", 2, "UAE Dirham"),
        "SAR": CurrencyInfo("SAR", 2, "Saudi Riyal"),
        "QAR": CurrencyInfo("QAR", 2, "Qatari Riyal"),
        "BHD": CurrencyInfo("BHD", 3, "Bahraini Dinar"),
        "KWD": CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
        "OMR": CurrencyInfo("OMR", 3, "Omani Rial"),
        "JOD": CurrencyInfo("JOD", 3, "Jordanian Dinar"),
        "EGP": CurrencyInfo("EGP", 2, "Egyptian Pound"),
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "INR": CurrencyInfo("INR", 2, "Indian Rupee"),
        "PKR": CurrencyInfo("PKR", 2, "Pakistani Rupee"),
        "PHP": CurrencyInfo("PHP", 2, "Philippine Peso"),
        "CNY": CurrencyInfo("CNY", 2, "Chinese Yuan"),
        "SGD": CurrencyInfo("SGD", 2, "Singapore Dollar"),
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
        "KRW": CurrencyInfo("KRW", 0, "South Korean Won"),
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return code in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        return cls._CURRENCIES.get(code)

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        """Minor units for ``code``; unknown codes default to 2."""
        info = cls._CURRENCIES.get(code)
        return info.decimal_places if info else 2

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES)

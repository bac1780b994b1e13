"""Currency -- ISO 4217 registry and precision-derived rounding."""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar

from budget_kernel.exceptions import InvalidCurrencyError


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def quantize_exponent(self) -> Decimal:
        """Exponent for Decimal.quantize() at this currency's precision."""
        return Decimal(1).scaleb(-self.decimal_places)


class CurrencyRegistry:
    """Registry of the ISO 4217 currencies budgets may be denominated in."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        info.code: info
        for info in (
            # Major reserve currencies
            CurrencyInfo("USD", 2, "US Dollar"),
            CurrencyInfo("EUR", 2, "Euro"),
            CurrencyInfo("GBP", 2, "Pound Sterling"),
            CurrencyInfo("CHF", 2, "Swiss Franc"),
            CurrencyInfo("CAD", 2, "Canadian Dollar"),
            CurrencyInfo("AUD", 2, "Australian Dollar"),
            CurrencyInfo("SEK", 2, "Swedish Krona"),
            CurrencyInfo("NOK", 2, "Norwegian Krone"),
            CurrencyInfo("DKK", 2, "Danish Krone"),
            CurrencyInfo("CNY", 2, "Chinese Yuan"),
            CurrencyInfo("INR", 2, "Indian Rupee"),
            # Donor and programme currencies
            CurrencyInfo("NGN", 2, "Nigerian Naira"),
            CurrencyInfo("GHS", 2, "Ghanaian Cedi"),
            CurrencyInfo("KES", 2, "Kenyan Shilling"),
            CurrencyInfo("TZS", 2, "Tanzanian Shilling"),
            CurrencyInfo("ZAR", 2, "South African Rand"),
            CurrencyInfo("ETB", 2, "Ethiopian Birr"),
            CurrencyInfo("EGP", 2, "Egyptian Pound"),
            CurrencyInfo("MAD", 2, "Moroccan Dirham"),
            CurrencyInfo("PKR", 2, "Pakistani Rupee"),
            CurrencyInfo("BDT", 2, "Bangladeshi Taka"),
            CurrencyInfo("PHP", 2, "Philippine Peso"),
            CurrencyInfo("BRL", 2, "Brazilian Real"),
            CurrencyInfo("MXN", 2, "Mexican Peso"),
            # Zero decimal currencies
            CurrencyInfo("JPY", 0, "Japanese Yen"),
            CurrencyInfo("KRW", 0, "South Korean Won"),
            CurrencyInfo("UGX", 0, "Ugandan Shilling"),
            CurrencyInfo("RWF", 0, "Rwandan Franc"),
            CurrencyInfo("XOF", 0, "West African CFA Franc"),
            CurrencyInfo("XAF", 0, "Central African CFA Franc"),
            # Three decimal currencies
            CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
            CurrencyInfo("BHD", 3, "Bahraini Dinar"),
            CurrencyInfo("JOD", 3, "Jordanian Dinar"),
            CurrencyInfo("TND", 3, "Tunisian Dinar"),
        )
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        """Check if a currency code is a registered ISO 4217 code."""
        if not code or not isinstance(code, str):
            return False
        return code.upper().strip() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo:
        """Get currency information by code."""
        return cls._CURRENCIES[cls.validate(code)]

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        return cls.get_info(code).decimal_places

    @classmethod
    def validate(cls, code: str) -> str:
        """Validate and normalize a currency code.

        Raises:
            InvalidCurrencyError: if the code is malformed or unregistered.
        """
        if not code or not isinstance(code, str):
            raise InvalidCurrencyError(code)

        normalized = code.upper().strip()
        if normalized not in cls._CURRENCIES:
            raise InvalidCurrencyError(code)
        return normalized

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES)

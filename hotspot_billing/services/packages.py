"""
Hotspot package catalog.

Maps package durations to prices in the smallest currency unit (KES).
"""

from dataclasses import dataclass

from hotspot_billing.exceptions import PurchaseValidationError
from hotspot_billing.models.domain import account_number_for


@dataclass(frozen=True)
class HotspotPackage:
    """Hotspot package configuration."""

    duration_hours: int
    price: int

    def __post_init__(self) -> None:
        """Validate package configuration."""
        if self.duration_hours <= 0:
            raise ValueError(f"Duration must be positive: {self.duration_hours}")
        if self.price <= 0:
            raise ValueError(f"Price must be positive: {self.price}")

    @property
    def account_number(self) -> str:
        return account_number_for(self.duration_hours)

    @property
    def display_name(self) -> str:
        suffix = "s" if self.duration_hours > 1 else ""
        return f"{self.duration_hours} Hour{suffix} Package"


# Package catalog (must match the cards on the captive portal page)
HOTSPOT_PACKAGES: dict[int, HotspotPackage] = {
    1: HotspotPackage(duration_hours=1, price=20),
    2: HotspotPackage(duration_hours=2, price=50),
    6: HotspotPackage(duration_hours=6, price=100),
    24: HotspotPackage(duration_hours=24, price=250),
}


def list_packages() -> list[HotspotPackage]:
    """Catalog ordered by duration."""
    return [HOTSPOT_PACKAGES[hours] for hours in sorted(HOTSPOT_PACKAGES)]


def get_package(duration_hours: int) -> HotspotPackage:
    """
    Get package configuration by duration.

    Raises:
        PurchaseValidationError: If no package has this duration
    """
    package = HOTSPOT_PACKAGES.get(duration_hours)
    if not package:
        raise PurchaseValidationError(
            "duration_hours", f"Unknown package duration: {duration_hours} hours"
        )
    return package


def ensure_catalog_price(duration_hours: int, amount: int) -> HotspotPackage:
    """
    Check that the submitted amount is the catalog price for the package.

    Raises:
        PurchaseValidationError: Unknown package or mismatched price
    """
    package = get_package(duration_hours)
    if package.price != amount:
        raise PurchaseValidationError(
            "amount",
            f"Amount {amount} does not match the {package.display_name} price of {package.price}",
        )
    return package

"""Cart snapshot schemas shared by checkout and the coupon preview."""

from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from src.core.money import CENT, ZERO
from src.schemas.common import CAMEL_CONFIG, Money


class CartLineItem(BaseModel):
    """A single priced line of a cart, as seen at checkout time."""

    model_config = CAMEL_CONFIG

    product_id: str = Field(min_length=1, description="Product identifier")
    product_name: str = Field(default="", description="Product display name")
    category_id: str | None = Field(default=None, description="Product category identifier")
    quantity: int = Field(ge=1, description="Units ordered")
    word_count: int | None = Field(default=None, ge=0, description="Word count for word-priced products")
    unit_price: Money = Field(ge=0, description="Price of one unit in USD")
    line_total: Money | None = Field(default=None, ge=0, description="unit_price * quantity in USD")
    additional_info: str | None = Field(default=None, description="Free-form buyer notes")

    @model_validator(mode="after")
    def fill_line_total(self) -> "CartLineItem":
        """Derive line_total when absent and reject totals that disagree with the unit price."""
        expected = self.unit_price * self.quantity
        if self.line_total is None:
            self.line_total = expected
        elif abs(self.line_total - expected) > CENT:
            raise ValueError(
                f"lineTotal {self.line_total} does not match unitPrice x quantity ({expected})"
            )
        return self


class CartSnapshot(BaseModel):
    """Line items and totals of a cart at checkout time.

    ``total_price`` always equals the sum of the line totals; it is derived
    when the caller omits it.
    """

    model_config = CAMEL_CONFIG

    products: list[CartLineItem] = Field(default_factory=list, description="Cart lines")
    total_price: Money | None = Field(default=None, ge=0, description="Sum of line totals in USD")
    total_quantity: int | None = Field(default=None, ge=0, description="Sum of line quantities")

    @model_validator(mode="after")
    def fill_totals(self) -> "CartSnapshot":
        """Derive or verify the cart totals."""
        computed: Decimal = sum((item.line_total for item in self.products), ZERO)
        if self.total_price is None:
            self.total_price = computed
        elif abs(self.total_price - computed) > CENT:
            raise ValueError(f"totalPrice {self.total_price} does not match the sum of line totals ({computed})")
        if self.total_quantity is None:
            self.total_quantity = sum(item.quantity for item in self.products)
        return self

    @property
    def is_empty(self) -> bool:
        """Check if the cart has no lines."""
        return not self.products

    def find_item(self, product_id: str) -> CartLineItem | None:
        """Return the first line for a product, if any."""
        return next((item for item in self.products if item.product_id == product_id), None)

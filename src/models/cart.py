"""Cart model type definitions for database operations."""

from datetime import datetime
from typing import TypedDict
from uuid import UUID


class CartProduct(TypedDict, total=False):
    """Structure for a single line in a cart.

    Stored as part of the carts.products JSONB array. Prices are in USD.
    """

    product_id: str
    product_name: str
    category_id: str | None
    quantity: int
    word_count: int | None
    unit_price: float
    line_total: float
    additional_info: str | None


class Cart(TypedDict):
    """Cart table row representation.

    Owned by the external cart workflow; checkout only reads it and
    empties it once the order snapshot has been persisted.
    """

    id: UUID
    user_id: UUID
    products: list[CartProduct]
    total_quantity: int
    total_price: float
    created_at: datetime
    updated_at: datetime

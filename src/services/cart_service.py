"""Read and empty the server-side cart used by checkout."""

import logging
from uuid import UUID

from src.core.supabase import get_supabase_client
from src.models.cart import Cart
from src.schemas.cart import CartSnapshot

logger = logging.getLogger(__name__)


class CartService:
    """Service for the carts table.

    Carts are maintained by the storefront's cart workflow; checkout only
    snapshots them and clears them once an order exists.
    """

    def __init__(self) -> None:
        """Initialize cart service with Supabase client."""
        self.client = get_supabase_client()

    async def get_cart(self, user_id: UUID | str) -> CartSnapshot:
        """Snapshot a user's cart.

        Args:
            user_id: The cart owner's UUID.

        Returns:
            CartSnapshot: The cart, empty if the user has none.
        """
        response = (
            self.client.table("carts")
            .select("*")
            .eq("user_id", str(user_id))
            .maybe_single()
            .execute()
        )

        if not response or not response.data:
            return CartSnapshot()

        row: Cart = response.data
        return CartSnapshot.model_validate({"products": row.get("products") or []})

    async def clear_cart(self, user_id: UUID | str) -> None:
        """Remove every line from a user's cart.

        Args:
            user_id: The cart owner's UUID.
        """
        self.client.table("carts").update(
            {"products": [], "total_quantity": 0, "total_price": 0}
        ).eq("user_id", str(user_id)).execute()

        logger.info("Cleared cart for user %s", user_id)

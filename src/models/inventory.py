"""Inventory model type definitions."""

from typing import TypedDict


class InventoryItem(TypedDict):
    """Inventory table row keyed by product.

    reserved is clamped at zero on every decrement; quantity is not, so an
    oversold product shows up as negative stock.
    """

    product_id: str
    quantity: int
    reserved: int


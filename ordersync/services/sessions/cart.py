"""
Cart helpers.

Pure functions over a list of CartEntry; callers persist the result
through SessionRepository.set_cart().
"""

from typing import List, Optional, Sequence

from ordersync.schemas import CartEntry, CreateOrderItem


def add_to_cart(
    cart: Sequence[CartEntry],
    menu_item_id: int,
    name: str,
    price: float,
    quantity: int = 1,
    special_requests: Optional[str] = None,
) -> List[CartEntry]:
    """Add an item; an item already in the cart has its quantity increased."""
    if quantity <= 0:
        raise ValueError("Quantity must be positive")

    updated = []
    found = False
    for entry in cart:
        if entry.menu_item_id == menu_item_id:
            found = True
            changes = {"quantity": entry.quantity + quantity}
            if special_requests:
                changes["special_requests"] = special_requests
            entry = entry.model_copy(update=changes)
        updated.append(entry)

    if not found:
        updated.append(CartEntry(
            menu_item_id=menu_item_id,
            name=name,
            price=price,
            quantity=quantity,
            special_requests=special_requests,
        ))
    return updated


def remove_from_cart(cart: Sequence[CartEntry], menu_item_id: int) -> List[CartEntry]:
    return [entry for entry in cart if entry.menu_item_id != menu_item_id]


def update_quantity(cart: Sequence[CartEntry], menu_item_id: int, quantity: int) -> List[CartEntry]:
    """Set an entry's quantity; zero or less removes it."""
    if quantity <= 0:
        return remove_from_cart(cart, menu_item_id)
    return [
        entry.model_copy(update={"quantity": quantity}) if entry.menu_item_id == menu_item_id else entry
        for entry in cart
    ]


def cart_total(cart: Sequence[CartEntry]) -> float:
    return round(sum(entry.price * entry.quantity for entry in cart), 2)


def cart_item_count(cart: Sequence[CartEntry]) -> int:
    return sum(entry.quantity for entry in cart)


def to_order_items(cart: Sequence[CartEntry]) -> List[CreateOrderItem]:
    """Convert cart entries to the createOrder item payload."""
    return [
        CreateOrderItem(
            menu_item_id=entry.menu_item_id,
            quantity=entry.quantity,
            special_requests=entry.special_requests,
        )
        for entry in cart
    ]

"""
Shared FastAPI dependencies.
"""
from uuid import UUID

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from marginlens.db.session import get_db
from marginlens.models.menu import MenuItem
from marginlens.models.restaurant import Restaurant


def get_restaurant(restaurant_id: UUID, db: Session = Depends(get_db)) -> Restaurant:
    """Resolve the restaurant in the path, raise 404 if not found."""
    restaurant = db.get(Restaurant, restaurant_id)
    if not restaurant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Restaurant not found"
        )
    return restaurant


def get_restaurant_menu_item(db: Session, restaurant: Restaurant, menu_item_id: UUID) -> MenuItem:
    """Menu item belonging to the restaurant, raise 404 otherwise."""
    item = db.get(MenuItem, menu_item_id)
    if not item or item.restaurant_id != restaurant.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Menu item not found"
        )
    return item

from app.db.models.user import User
from app.db.models.circle import Circle, CircleMember
from app.db.models.item import Item, ItemCircle

__all__ = ["User", "Circle", "CircleMember", "Item", "ItemCircle"]

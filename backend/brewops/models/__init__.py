from .auth import User, SessionToken
from .shops import Shop, ShopStaff
from .orders import Order, OrderItem, OrderNote
from .activity import ActivityLog

__all__ = [
    'User', 'SessionToken',
    'Shop', 'ShopStaff',
    'Order', 'OrderItem', 'OrderNote',
    'ActivityLog',
]

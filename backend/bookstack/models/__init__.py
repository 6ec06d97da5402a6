from .catalog import Title, MembershipPlan
from .accounts import User, Address, SessionToken
from .entitlements import EntitlementRecord
from .orders import Order, OrderItem
from .borrows import Borrow
from .activity import Notification, ActivityLog

__all__ = [
    'Title', 'MembershipPlan',
    'User', 'Address', 'SessionToken',
    'EntitlementRecord',
    'Order', 'OrderItem',
    'Borrow',
    'Notification', 'ActivityLog',
]

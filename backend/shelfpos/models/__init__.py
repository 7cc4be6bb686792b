from .auth import User, SessionToken
from .inventory import Product
from .sales import Transaction, TransactionLine, CheckoutAttempt
from .activity import RecentActivity

__all__ = [
    'User', 'SessionToken',
    'Product',
    'Transaction', 'TransactionLine', 'CheckoutAttempt',
    'RecentActivity',
]

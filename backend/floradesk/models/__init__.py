from .catalog import Flower, Variant
from .customers import Customer
from .transactions import Transaction
from .shifts import Shift
from .supplies import Supply
from .auth import User, AdminUser

__all__ = [
    'Flower', 'Variant',
    'Customer',
    'Transaction',
    'Shift',
    'Supply',
    'User', 'AdminUser',
]

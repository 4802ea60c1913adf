from .auth import User, SessionToken
from .catalog import Category, Product
from .ledger import Transaction, TransactionItem, Withdrawal
from .audit import FailedValidation
from .settings import QRISConfig

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product',
    'Transaction', 'TransactionItem', 'Withdrawal',
    'FailedValidation',
    'QRISConfig',
]

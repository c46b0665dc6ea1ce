from .menu import Category, MenuItem, MenuItemOptionGroup, MenuItemOption, Customer, DiningTable
from .shifts import Shift
from .orders import Order, OrderItem, OrderItemCustomization, Payment, OrderCounter, PrintQueueItem
from .accounts import Account, AccountTransaction, AccountTransfer, AccountRelation, PaymentMethodAccount, Expense, Receipt
from .audit import AuditLog

__all__ = [
    'Category', 'MenuItem', 'MenuItemOptionGroup', 'MenuItemOption', 'Customer', 'DiningTable',
    'Shift',
    'Order', 'OrderItem', 'OrderItemCustomization', 'Payment', 'OrderCounter', 'PrintQueueItem',
    'Account', 'AccountTransaction', 'AccountTransfer', 'AccountRelation', 'PaymentMethodAccount',
    'Expense', 'Receipt',
    'AuditLog',
]

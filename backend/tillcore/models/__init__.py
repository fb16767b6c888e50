from .tenancy import Store, LoyaltyProgramConfig
from .inventory import Product
from .customers import Customer, LoyaltyLedgerEntry
from .sales import Sale, SaleLineItem
from .communications import Notification, MessagingSettings

__all__ = [
    'Store', 'LoyaltyProgramConfig',
    'Product',
    'Customer', 'LoyaltyLedgerEntry',
    'Sale', 'SaleLineItem',
    'Notification', 'MessagingSettings',
]

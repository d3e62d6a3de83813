from .auth import User, SessionToken
from .tenancy import Store, StoreMember, StoreSetting
from .inventory import Product, StockMovement
from .invoicing import Client, Invoice, InvoiceItem, Payment
from .subscriptions import Subscription, SubscriptionOffer, PaymentRequest
from .notifications import Notification

__all__ = [
    'User', 'SessionToken',
    'Store', 'StoreMember', 'StoreSetting',
    'Product', 'StockMovement',
    'Client', 'Invoice', 'InvoiceItem', 'Payment',
    'Subscription', 'SubscriptionOffer', 'PaymentRequest',
    'Notification',
]

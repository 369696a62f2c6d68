from .catalog import Category, Product
from .inventory import StockMovement, StockAlert
from .coupons import Coupon
from .orders import Order, OrderItem, OrderEvent

__all__ = [
    'Category', 'Product',
    'StockMovement', 'StockAlert',
    'Coupon',
    'Order', 'OrderItem', 'OrderEvent',
]

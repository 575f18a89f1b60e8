from .catalog import Item, ItemComponent, ItemKind
from .customers import Customer
from .orders import Order, OrderLine, OrderStatus, BLOCKING_STATUSES, TERMINAL_STATUSES
from .stock import StockMovement, MovementReason, ORDER_REASONS, MANUAL_REASONS, REASON_DESCRIPTIONS

__all__ = [
    'Item', 'ItemComponent', 'ItemKind',
    'Customer',
    'Order', 'OrderLine', 'OrderStatus', 'BLOCKING_STATUSES', 'TERMINAL_STATUSES',
    'StockMovement', 'MovementReason', 'ORDER_REASONS', 'MANUAL_REASONS', 'REASON_DESCRIPTIONS',
]

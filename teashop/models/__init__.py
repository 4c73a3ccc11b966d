# teashop/models/__init__.py
from .catalog import *          # Product
from .user import *             # User
from .order import *            # Order
from .order_status_log import *  # OrderStatusLog
from .cart import *             # CartItem
from .receipt_check import *    # ReceiptCheck (очередь проверок чеков)
from .subscriber import *       # Subscriber (операторы в Telegram)

from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    CUSTOMER = "customer"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ReceiptCheckState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"          # чек найден
    MISSED = "missed"      # попытка прошла, чека ещё нет
    CANCELLED = "cancelled"

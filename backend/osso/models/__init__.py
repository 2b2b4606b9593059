from .periods import FinancialPeriod
from .containers import Product, Container, ContainerItem, ContainerExpense, ExpenseCorrection, OperatingExpense
from .investors import Investor, ContainerInvestment, InvestorPayout
from .sales import Client, Sale, SaleItem, Payment, Return, ReturnItem, DocumentCounter
from .inventory import InventorySession, InventorySessionItem
from .system import AuditLog, SystemControl, CurrencySetting

__all__ = [
    'FinancialPeriod',
    'Product', 'Container', 'ContainerItem', 'ContainerExpense', 'ExpenseCorrection', 'OperatingExpense',
    'Investor', 'ContainerInvestment', 'InvestorPayout',
    'Client', 'Sale', 'SaleItem', 'Payment', 'Return', 'ReturnItem', 'DocumentCounter',
    'InventorySession', 'InventorySessionItem',
    'AuditLog', 'SystemControl', 'CurrencySetting',
]

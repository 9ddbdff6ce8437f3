from .auth import User
from .catalog import Sku
from .ledgers import (
    FINISHING_SOURCE_PRODUCTION,
    FINISHING_SOURCE_RETURN,
    CuttingRecord,
    FabricRecord,
    FinishingRecord,
    ProductionRecord,
    SalesRecord,
    WarehouseRecord,
)
from .stock import WarehouseStock
from .returns import ReturnProcessing, ReturnRecord
from .audit import ActivityLog, ImportLog

__all__ = [
    'User', 'Sku',
    'FabricRecord', 'CuttingRecord', 'ProductionRecord', 'FinishingRecord',
    'WarehouseRecord', 'SalesRecord',
    'FINISHING_SOURCE_PRODUCTION', 'FINISHING_SOURCE_RETURN',
    'WarehouseStock',
    'ReturnRecord', 'ReturnProcessing',
    'ActivityLog', 'ImportLog',
]

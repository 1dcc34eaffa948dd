"""Store subpackage - collaborator interfaces and their implementations."""
from .base import CatalogStore, ProductStore, RateStore, RuleStore, StoneStore
from .memory import InMemoryStore
from .csv_store import CsvCatalogStore

__all__ = [
    'CatalogStore', 'ProductStore', 'RateStore', 'RuleStore', 'StoneStore',
    'InMemoryStore', 'CsvCatalogStore',
]

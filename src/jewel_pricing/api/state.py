"""
Service container shared by the API routers.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from ..config.settings import Settings, get_settings
from ..engine.application_engine import DiscountApplicationEngine
from ..jobs.refresh import RefreshJobOrchestrator
from ..services.discount_service import DiscountService
from ..services.pricing_service import PricingService
from ..stores.csv_store import CsvCatalogStore


@dataclass
class AppState:
    """Store, engine, services and job orchestrator of one running app."""
    settings: Settings
    store: object
    engine: DiscountApplicationEngine
    pricing_service: PricingService
    discount_service: DiscountService
    orchestrator: RefreshJobOrchestrator

    @classmethod
    def from_store(cls, store, settings: Optional[Settings] = None) -> 'AppState':
        settings = settings or get_settings()
        engine = DiscountApplicationEngine(store, settings)
        return cls(
            settings=settings,
            store=store,
            engine=engine,
            pricing_service=PricingService(store, engine, settings),
            discount_service=DiscountService(store, engine),
            orchestrator=RefreshJobOrchestrator(store, settings),
        )


def build_state(settings: Optional[Settings] = None) -> AppState:
    """Default wiring: the file store under ``settings.data_dir``."""
    settings = settings or get_settings()
    return AppState.from_store(CsvCatalogStore(settings.data_dir), settings)


def get_state(request: Request) -> AppState:
    return request.app.state.pricing

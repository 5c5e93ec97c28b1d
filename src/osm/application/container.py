from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from osm.config import EngineSettings
from osm.repositories.sqlite_repo import SqliteRepository
from osm.services.catalog_service import CartBuilder, CatalogService
from osm.services.excel_service import ExcelService
from osm.services.insurance_service import InsuranceService
from osm.services.inventory_service import InventoryLedger
from osm.services.invoice_service import InvoiceIssuer
from osm.services.payment_service import PaymentLedger
from osm.services.sales_service import SalesService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    settings: EngineSettings
    catalog: CatalogService
    carts: CartBuilder
    insurance: InsuranceService
    inventory: InventoryLedger
    sales: SalesService
    excel: ExcelService


def build_container(db_path: Path | str, settings: Optional[EngineSettings] = None) -> AppContainer:
    settings = settings or EngineSettings()
    repo = SqliteRepository(db_path, busy_timeout_ms=settings.busy_timeout_ms)
    repo.init_db()

    inventory = InventoryLedger(repo.unit_of_work)
    sales = SalesService(
        repo.unit_of_work,
        inventory,
        InvoiceIssuer(prefix=settings.invoice_prefix),
        PaymentLedger(),
    )

    return AppContainer(
        repo=repo,
        settings=settings,
        catalog=CatalogService(repo.unit_of_work),
        carts=CartBuilder(repo),
        insurance=InsuranceService(repo.unit_of_work),
        inventory=inventory,
        sales=sales,
        excel=ExcelService(inventory),
    )

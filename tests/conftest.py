"""Shared pytest fixtures and utilities for stockdesk tests."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from stockdesk import domain_store  # noqa: E402
from stockdesk.constants import ProductStatus, Table  # noqa: E402
from stockdesk.domain_store import DomainStore  # noqa: E402
from stockdesk.errors import RemoteError  # noqa: E402
from stockdesk.gateways import InMemoryGateway, RemoteGateway, TableName  # noqa: E402
from stockdesk.image_storage import ImageStorage, ImageUpload  # noqa: E402
from stockdesk.record_mapper import Product, Sale  # noqa: E402
from stockdesk.setup_workbook import create_workbook  # noqa: E402


FIXED_NOW = datetime(2025, 3, 14, 15, 30, tzinfo=UTC)


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


# ---------------------------------------------------------------------------
# Gateway doubles
# ---------------------------------------------------------------------------


@dataclass
class _FailureRule:
    method: str
    table: Optional[str]
    skip: int
    count: int


class FlakyGateway(RemoteGateway):
    """In-memory gateway that can be told to fail specific calls.

    Every call is recorded in :attr:`calls` as ``(method, table)``.
    """

    def __init__(self, inner: Optional[InMemoryGateway] = None) -> None:
        self.inner = inner or InMemoryGateway()
        self.calls: List[tuple] = []
        self._rules: List[_FailureRule] = []

    def fail(self, method: str, table: Optional[TableName] = None, *, skip: int = 0, count: int = 1) -> None:
        """Fail the next ``count`` matching calls after letting ``skip`` through."""

        name = Table(table).value if table is not None else None
        self._rules.append(_FailureRule(method, name, skip, count))

    def _check(self, method: str, table: TableName) -> None:
        name = Table(table).value
        self.calls.append((method, name))
        for rule in self._rules:
            if rule.method != method or (rule.table is not None and rule.table != name):
                continue
            if rule.skip > 0:
                rule.skip -= 1
                return
            if rule.count > 0:
                rule.count -= 1
                raise RemoteError(f"injected {method} failure on {name}")

    def writes(self) -> List[tuple]:
        return [call for call in self.calls if call[0] != "list"]

    def list(self, table):
        self._check("list", table)
        return self.inner.list(table)

    def create(self, table, fields):
        self._check("create", table)
        return self.inner.create(table, fields)

    def update(self, table, record_id, fields):
        self._check("update", table)
        return self.inner.update(table, record_id, fields)

    def delete(self, table, record_id):
        self._check("delete", table)
        return self.inner.delete(table, record_id)

    def delete_many(self, table, record_ids):
        self._check("delete_many", table)
        return self.inner.delete_many(table, record_ids)


class RecordingImageStorage(ImageStorage):
    """Image storage double remembering uploads and deletions."""

    base = "https://img.example/product-images/"

    def __init__(self) -> None:
        self.uploaded: List[str] = []
        self.deleted: List[str] = []
        self.fail_uploads = False

    def upload(self, image: ImageUpload) -> str:
        if self.fail_uploads:
            raise RemoteError("upload refused")
        url = f"{self.base}{len(self.uploaded) + 1}-{image.filename}"
        self.uploaded.append(url)
        return url

    def delete(self, url: str) -> None:
        self.deleted.append(url)


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


def product_record(**overrides: Any) -> Dict[str, Any]:
    """Storage-native product record with sensible defaults."""

    record: Dict[str, Any] = {
        "name": "Widget",
        "category": "Accessoires > Montres",
        "supplier": "Acme",
        "buy_price": "12.00",
        "sell_price": "20.00",
        "stock": 10,
        "created_at": "2025-01-01T09:00:00+00:00",
    }
    record.update(overrides)
    return record


@pytest.fixture
def gateway() -> FlakyGateway:
    return FlakyGateway()


@pytest.fixture
def image_storage() -> RecordingImageStorage:
    return RecordingImageStorage()


@pytest.fixture
def store(gateway: FlakyGateway, image_storage: RecordingImageStorage) -> DomainStore:
    """Empty store over a flaky in-memory gateway."""

    return DomainStore(gateway, image_storage=image_storage).refresh()


@pytest.fixture
def seed_product(store: DomainStore, gateway: FlakyGateway) -> Callable[..., Product]:
    """Insert a product straight into the backend and refresh the store."""

    def _seed(**overrides: Any) -> Product:
        record = gateway.inner.create(Table.PRODUCTS, product_record(**overrides))
        store.refresh()
        return store.get_product(record["id"])

    return _seed


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``domain_store.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(domain_store, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# Entity builders for pure view tests
# ---------------------------------------------------------------------------


def make_product(
    product_id: int = 1,
    *,
    name: str = "Widget",
    category: str = "Accessoires > Montres",
    supplier: str = "Acme",
    buy: str = "10",
    sell: str = "20",
    stock: int = 5,
    status: Optional[ProductStatus] = None,
    created_at: datetime = FIXED_NOW,
) -> Product:
    if status is None:
        status = ProductStatus.OUT_OF_STOCK if stock == 0 else ProductStatus.ACTIVE
    return Product(
        id=product_id,
        name=name,
        category=category,
        supplier=supplier,
        buy_price=Decimal(buy),
        sell_price=Decimal(sell),
        stock=stock,
        created_at=created_at,
        status=status,
    )


def make_sale(
    sale_id: int = 1,
    *,
    product_name: str = "Widget",
    quantity: int = 1,
    total_price: str = "20",
    total_margin: str = "10",
    created_at: datetime = FIXED_NOW,
    product_id: Optional[int] = 1,
) -> Sale:
    total = Decimal(total_price)
    return Sale(
        id=sale_id,
        product_id=product_id,
        product_name=product_name,
        quantity=quantity,
        sell_price=total / quantity,
        total_price=total,
        total_margin=Decimal(total_margin),
        created_at=created_at,
    )


# ---------------------------------------------------------------------------
# Workbook fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workbook_path(tmp_path: Path) -> Path:
    """Return a freshly initialised stockdesk workbook."""

    return create_workbook(tmp_path / "stockdesk.xlsx")


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., Path]:
    """Write a config.ini with the given sections and return its path."""

    def _create(sections: Mapping[str, Mapping[str, str]], *, name: str = "config.ini") -> Path:
        lines: List[str] = []
        for section, options in sections.items():
            lines.append(f"[{section}]")
            lines.extend(f"{key} = {value}" for key, value in options.items())
            lines.append("")
        path = tmp_path / name
        path.write_text("\n".join(lines), encoding="utf-8")
        return path

    return _create


"""Shared pytest fixtures and utilities for shop ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Sequence

import openpyxl
import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from shop_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from setup_store import create_empty_store  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "WalkInCustomer = Walk-in customer\n"
    "DefaultUnit = unit\n\n"
    "[Policy]\n"
    "UnknownProducts = {unknown_products}\n"
    "AllowNegativeStock = {allow_negative_stock}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    data_path: Path
    schema_version: str
    shop_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/snapshot bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        unknown_products: str = "skip",
        allow_negative_stock: str = "yes",
        initialize: bool = True,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        data_path = bundle_dir / "ledger.json"
        if initialize:
            create_empty_store(data_path)
        data_file_entry = data_path.name if make_relative else str(data_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                unknown_products=unknown_products,
                allow_negative_stock=allow_negative_stock,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            data_path=data_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="shop-ledger", description="Shop ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.json",
        shop_name="Test Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Assemble a runtime context around an empty in-memory snapshot."""

    return core_logic.RuntimeContext(settings=settings, snapshot=data_manager.Snapshot())


@pytest.fixture
def seeded_context(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Context holding two customers and two products with fixed ids."""

    snapshot = context.snapshot
    snapshot.customers["C1"] = data_manager.Customer(customer_id="C1", name="Alice")
    snapshot.customers["C2"] = data_manager.Customer(customer_id="C2", name="Bob", total_debt=Decimal("50"))
    snapshot.products["P1"] = data_manager.Product(
        product_id="P1", name="Rice", default_price=Decimal("100"), stock=10
    )
    snapshot.products["P2"] = data_manager.Product(
        product_id="P2", name="Oil", default_price=Decimal("40"), stock=5
    )
    return context


@pytest.fixture
def line() -> Callable[..., data_manager.LineItem]:
    """Factory for line items with sensible defaults."""

    def _make(product_id: str = "P1", quantity: int = 1, unit_price: str = "100", name: str = "") -> data_manager.LineItem:
        return data_manager.LineItem(
            product_id=product_id,
            name=name or product_id,
            quantity=quantity,
            unit_price=Decimal(unit_price),
        )

    return _make


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


@pytest.fixture
def xlsx_factory(tmp_path: Path) -> Callable[..., Path]:
    """Write rows (header included) into the first sheet of a new workbook."""

    def _write(rows: Sequence[Sequence[object]], *, filename: str = "import.xlsx") -> Path:
        workbook = openpyxl.Workbook()
        worksheet = workbook.active
        for row in rows:
            worksheet.append(list(row))
        target = tmp_path / filename
        workbook.save(target)
        return target

    return _write

# Command-line entry point for the optical sales manager.
#
# Commands:
# - osm init-db
#   Create or migrate the database.
# - osm stock level frame 3
#   Delivered quantity on hand for one product.
# - osm stock check cart.json
#   Check a cart's lines against delivered stock without writing anything.
# - osm stock import-deliveries deliveries.xlsx
#   Add delivered lots from a spreadsheet.
# - osm sale create cart.json
# - osm sale update 12 cart.json
# - osm sale cancel 12
# - osm sale pay 12 150.00 --method card --ref TPE-889
# - osm sale payments 12
#
# The database defaults to the per-user application directory; override it
# with --db or OSM_DB_PATH.

from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from osm.application.container import AppContainer, build_container
from osm.config import get_app_paths, get_engine_settings
from osm.domain.errors import AppError, InsufficientStockError
from osm.domain.models import PaymentMethod, ProductRef, Sale
from osm.logging_config import setup_logging

log = logging.getLogger(__name__)


def _container(ctx: click.Context) -> AppContainer:
    obj = ctx.find_root().obj
    if obj.get("container") is None:
        settings = get_engine_settings()
        obj["container"] = build_container(obj["db_path"], settings)
    return obj["container"]


def _load_cart(path: str) -> dict:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise click.ClickException(f"{path} must contain a JSON object.")
    return data


def _echo_sale(sale: Sale, currency: str) -> None:
    click.echo(
        f"Sale {sale.id} [{sale.status.value}] {currency} total={sale.total_incl_tax:.2f} "
        f"covered={sale.insurance_covered:.2f} due={sale.client_due:.2f} "
        f"paid={sale.amount_paid:.2f} balance={sale.balance_due:.2f}"
    )


class _DomainErrors(click.Group):
    """Turns domain errors into a clean message and a non-zero exit code."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except InsufficientStockError as exc:
            log.warning("cli_rejected error=%s", exc)
            raise click.ClickException(f"{exc} (short by {exc.shortfall})") from exc
        except AppError as exc:
            log.warning("cli_rejected error=%s", exc)
            raise click.ClickException(str(exc)) from exc


@click.group(cls=_DomainErrors)
@click.option("--db", "db_path", type=click.Path(dir_okay=False), default=None, help="SQLite database file")
@click.option("--verbose", is_flag=True, help="Echo log events to stderr")
@click.pass_context
def cli(ctx: click.Context, db_path: str | None, verbose: bool) -> None:
    """Optical shop sales, stock and invoicing."""
    if db_path:
        resolved = Path(db_path)
        logs_dir = resolved.parent / "logs"
    else:
        paths = get_app_paths()
        resolved, logs_dir = paths.db_path, paths.logs_dir
    setup_logging(logs_dir, console=verbose)
    ctx.obj = {"db_path": resolved, "container": None}


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create or migrate the database."""
    container = _container(ctx)
    click.echo(f"Database ready at {container.repo.db_path} (schema v{container.repo.schema_version()})")


# ---------- stock ----------
@cli.group("stock")
def stock_group() -> None:
    """Stock lots and availability."""


@stock_group.command("level")
@click.argument("kind", type=click.Choice(["frame", "lens"]))
@click.argument("product_id", type=int)
@click.pass_context
def stock_level(ctx: click.Context, kind: str, product_id: int) -> None:
    ref = ProductRef.parse(kind, product_id)
    click.echo(f"{ref}: {_container(ctx).inventory.stock_level(ref)}")


@stock_group.command("check")
@click.argument("cart_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def stock_check(ctx: click.Context, cart_file: str) -> None:
    """Check a cart against delivered stock."""
    report = _container(ctx).sales.check_availability(_load_cart(cart_file).get("lines") or [])
    for demand in report.demands:
        click.echo(f"{demand.product}: requested {demand.requested}, available {demand.available}")
    click.echo("OK")


@stock_group.command("import-deliveries")
@click.argument("xlsx_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_deliveries(ctx: click.Context, xlsx_file: str) -> None:
    """Add delivered lots from an Excel sheet."""
    ok, skipped = _container(ctx).excel.import_deliveries_excel(xlsx_file)
    click.echo(f"Imported {ok} deliveries, skipped {skipped} rows")


# ---------- sales ----------
@cli.group("sale")
def sale_group() -> None:
    """Create, edit, cancel and pay sales."""


@sale_group.command("create")
@click.argument("cart_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def sale_create(ctx: click.Context, cart_file: str) -> None:
    receipt = _container(ctx).sales.create_sale(_load_cart(cart_file))
    _echo_sale(receipt.sale, _container(ctx).settings.currency)
    click.echo(f"Invoice {receipt.invoice.number} [{receipt.invoice.status.value}]")


@sale_group.command("update")
@click.argument("sale_id", type=int)
@click.argument("cart_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def sale_update(ctx: click.Context, sale_id: int, cart_file: str) -> None:
    container = _container(ctx)
    _echo_sale(container.sales.update_sale(sale_id, _load_cart(cart_file)), container.settings.currency)


@sale_group.command("cancel")
@click.argument("sale_id", type=int)
@click.pass_context
def sale_cancel(ctx: click.Context, sale_id: int) -> None:
    container = _container(ctx)
    _echo_sale(container.sales.cancel_sale(sale_id), container.settings.currency)


@sale_group.command("pay")
@click.argument("sale_id", type=int)
@click.argument("amount", type=float)
@click.option(
    "--method",
    type=click.Choice([m.value for m in PaymentMethod]),
    default=PaymentMethod.CASH.value,
    show_default=True,
)
@click.option("--ref", "reference", default=None, help="Card slip, cheque or transfer reference")
@click.pass_context
def sale_pay(ctx: click.Context, sale_id: int, amount: float, method: str, reference: str | None) -> None:
    receipt = _container(ctx).sales.record_payment(sale_id, amount, method, reference)
    click.echo(f"Payment {receipt.payment.id} of {receipt.payment.amount:.2f} ({receipt.payment.method.value})")
    _echo_sale(receipt.sale, _container(ctx).settings.currency)
    click.echo(f"Invoice {receipt.invoice.number} [{receipt.invoice.status.value}]")


@sale_group.command("payments")
@click.argument("sale_id", type=int)
@click.pass_context
def sale_payments(ctx: click.Context, sale_id: int) -> None:
    payments = _container(ctx).sales.list_payments(sale_id)
    if not payments:
        click.echo("No payments")
        return
    for p in payments:
        click.echo(f"{p.paid_at}  {p.amount:>10.2f}  {p.method.value:<8}  {p.reference or ''}".rstrip())


def main() -> None:
    cli(prog_name="osm")


if __name__ == "__main__":
    main()

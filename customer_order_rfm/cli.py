"""Command line entry points for the customer order RFM toolkit."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from customer_order_rfm.analyses.agents import summarize_agents
from customer_order_rfm.foundation.normalizer import OrderNormalizer
from customer_order_rfm.foundation.orders import (
    group_orders_by_customer,
    to_naive_utc,
)
from customer_order_rfm.foundation.rfm import RFMEngine
from customer_order_rfm.foundation.search import filter_orders
from customer_order_rfm.monitoring.exports import (
    export_rfm_profiles,
    export_sku_monthly_report,
)
from customer_order_rfm.storage.backends import create_store
from customer_order_rfm.storage.repository import CustomerRepository
from customer_order_rfm.sync import UPLOAD_MODES, UploadWorkflow, load_agents

logger = logging.getLogger(__name__)

DEFAULT_STORE_URL = "sqlite:///customers.db"


def _store_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--store",
        default=os.getenv("RFM_STORE_URL", DEFAULT_STORE_URL),
        help="Document store URL (SQLAlchemy URL or memory://). "
        "Defaults to $RFM_STORE_URL or a local SQLite file.",
    )


def _repository(url: str) -> CustomerRepository:
    return CustomerRepository(create_store(url))


def _parse_reference_date(value: str | None) -> datetime | None:
    if not value:
        return None
    return to_naive_utc(datetime.fromisoformat(value))


def _dump_json(payload: dict[str, Any]) -> None:
    json.dump(payload, fp=sys.stdout, indent=2, sort_keys=True, default=str)
    print()


def upload_cli(argv: list[str] | None = None) -> int:
    """Process an order report and a billing detail and persist customers."""

    parser = argparse.ArgumentParser(description=upload_cli.__doc__)
    parser.add_argument("orders", type=Path, help="Order report (.xlsx/.csv)")
    parser.add_argument("billing", type=Path, help="Billing detail (.xlsx/.csv)")
    parser.add_argument(
        "--mode",
        choices=UPLOAD_MODES,
        default="full",
        help="full replaces stored data; incremental adds newer orders only",
    )
    parser.add_argument(
        "--agents",
        type=Path,
        default=os.getenv("RFM_AGENTS_FILE") or None,
        help="JSON mapping of POS user email to sales agent name/zone",
    )
    parser.add_argument(
        "--include-undelivered",
        action="store_true",
        help="Keep orders whose status is not 'Entregado'",
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Process the files without persisting"
    )
    _store_argument(parser)

    args = parser.parse_args(argv)

    agents = load_agents(args.agents) if args.agents else None
    workflow = UploadWorkflow(
        _repository(args.store),
        normalizer=OrderNormalizer(
            delivered_only=not args.include_undelivered, agents=agents
        ),
    )

    logger.info(f"Uploading {args.orders} + {args.billing} ({args.mode} mode)")
    outcome = workflow.upload(
        args.orders, args.billing, mode=args.mode, persist=not args.dry_run
    )

    payload: dict[str, Any] = {
        "mode": outcome.mode,
        "persistence_status": outcome.persistence_status,
        "processing": outcome.processing.summary(),
        "cleared": outcome.cleared,
        "warnings": outcome.warnings,
    }
    if outcome.save_result is not None:
        payload["customers_saved"] = outcome.save_result.customers_saved
        payload["customers_total"] = outcome.save_result.customers_total
    if outcome.error:
        payload["error"] = outcome.error
    _dump_json(payload)

    return 1 if outcome.persistence_status == "failed" else 0


def rfm_report_cli(argv: list[str] | None = None) -> int:
    """Score stored customers with RFM and export the segmented profiles."""

    parser = argparse.ArgumentParser(description=rfm_report_cli.__doc__)
    parser.add_argument(
        "--output",
        type=Path,
        help="Optional .csv/.xlsx path for the per-customer profiles",
    )
    parser.add_argument(
        "--reference-date",
        help="ISO date recency is measured from (defaults to now)",
    )
    parser.add_argument(
        "--query",
        help="Comma-separated SKU terms; only matching items count as monetary",
    )
    _store_argument(parser)

    args = parser.parse_args(argv)

    customers = _repository(args.store).load_customers()
    if not customers:
        logger.warning("No customers stored; the report will be empty")

    analysis = RFMEngine().analyze(
        customers,
        reference_date=_parse_reference_date(args.reference_date),
        query=args.query,
    )
    if args.output:
        export_rfm_profiles(analysis, args.output)
    _dump_json(analysis.as_dict())
    return 0


def sku_report_cli(argv: list[str] | None = None) -> int:
    """Export per-customer monthly quantities for SKUs matching a query."""

    parser = argparse.ArgumentParser(description=sku_report_cli.__doc__)
    parser.add_argument("output", type=Path, help="Destination .csv/.xlsx")
    parser.add_argument("--query", help="Comma-separated SKU terms")
    _store_argument(parser)

    args = parser.parse_args(argv)

    orders = _repository(args.store).load_orders()
    if args.query:
        orders = filter_orders(orders, args.query)
    frame = export_sku_monthly_report(
        group_orders_by_customer(orders), args.output, query=args.query
    )
    logger.info(f"SKU report written for {len(frame)} customers")
    return 0


def agents_report_cli(argv: list[str] | None = None) -> int:
    """Summarise customers and revenue handled by a sales agent or zone."""

    parser = argparse.ArgumentParser(description=agents_report_cli.__doc__)
    parser.add_argument("--zone", help="Restrict to a sales zone")
    parser.add_argument("--agent", help="Restrict to a sales agent name")
    _store_argument(parser)

    args = parser.parse_args(argv)

    summary = summarize_agents(
        _repository(args.store).load_orders(), zone=args.zone, agent=args.agent
    )
    _dump_json(
        {
            "zone": summary.zone,
            "agent": summary.agent,
            "total_customers": summary.total_customers,
            "total_orders": summary.total_orders,
            "total_revenue": str(summary.total_revenue),
            "revenue_per_customer": str(summary.revenue_per_customer),
            "shared_customers": summary.shared_customers,
            "customers": [
                {
                    "name": history.customer.name,
                    "identity_key": history.customer.identity_key,
                    "orders": len(history.customer.orders),
                    "spent": str(history.customer.total_spent),
                    "agents": history.agents,
                }
                for history in summary.customers
            ],
        }
    )
    return 0


COMMANDS: dict[str, Callable[[list[str] | None], int]] = {
    "upload": upload_cli,
    "rfm": rfm_report_cli,
    "sku-report": sku_report_cli,
    "agents": agents_report_cli,
}


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] not in COMMANDS:
        print(
            f"usage: customer-rfm {{{','.join(COMMANDS)}}} [options]", file=sys.stderr
        )
        return 2
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    return COMMANDS[argv[0]](argv[1:])


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

"""
fabcharge CLI

Commands:
  serve      - Run the webhook server
  reconcile  - Run one notification payload (JSON file) through the pipeline
  price      - Show the charge lines for an ad-hoc print job
"""

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from decimal import Decimal


def cmd_serve(args):
    """Run the webhook server."""
    import uvicorn

    port = args.port or int(os.environ.get("PORT", 8000))
    host = args.host or "0.0.0.0"

    print(f"Starting fabcharge on {host}:{port}")

    uvicorn.run(
        "api.server:app",
        host=host,
        port=port,
        reload=args.reload,
        workers=args.workers,
    )


def cmd_reconcile(args):
    """Reconcile one notification read from a JSON file."""
    from core.config import Settings
    from core.logging import configure_logging
    from reconciliation.dispatch import dispatch
    from reconciliation.reconciler import open_reconciler

    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)

    with open(args.payload, "r", encoding="utf-8") as f:
        try:
            payload = json.load(f)
        except json.JSONDecodeError as e:
            print(f"Error: invalid JSON payload: {e}")
            sys.exit(2)

    resources = settings.allowed_resources
    if args.resources:
        from core.config import parse_resource_ids
        resources = parse_resource_ids(args.resources)

    ack = dispatch(payload, lambda: open_reconciler(settings), settings.tz, resources)

    print(json.dumps(ack.to_dict(), indent=2))
    if ack.failed:
        sys.exit(1)


def cmd_price(args):
    """Print charge lines for an ad-hoc job."""
    from billing.pricing import compute_charges
    from core.config import Settings
    from core.models import BillingMode, MaterialOverride, PrintJob, ResourcePricingConfig

    settings = Settings.from_env()
    overrides = {}
    if args.material_price is not None:
        overrides[args.material] = MaterialOverride(
            name=args.material_name or args.material,
            price_per_ml=Decimal(args.material_price),
        )

    pricing = ResourcePricingConfig(
        printer_serial="cli",
        default_price_per_ml=Decimal(args.default_price),
        billing_mode=BillingMode(args.mode),
        material_overrides=overrides,
    )
    now = datetime.now(timezone.utc)
    job = PrintJob(
        guid="cli",
        name=args.name,
        material_code=args.material,
        volume_ml=Decimal(args.volume),
        started_at=now,
        finished_at=now,
    )

    lines = compute_charges(job, pricing, settings.tz, device_name=args.device)
    for line in lines:
        print(f"{line.kind.value:<10} {line.amount:>10}  {line.description}")


def main():
    parser = argparse.ArgumentParser(
        description="fabcharge - bill Formlabs prints against Fabman usage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the webhook server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true")
    serve_parser.add_argument("--workers", type=int, default=1)

    # reconcile
    reconcile_parser = subparsers.add_parser("reconcile", help="Reconcile a notification file")
    reconcile_parser.add_argument("payload", help="Path to the webhook JSON body")
    reconcile_parser.add_argument("--resources", help="Comma-separated resource ids")

    # price
    price_parser = subparsers.add_parser("price", help="Compute charges for a job")
    price_parser.add_argument("--volume", required=True, help="Volume in ml")
    price_parser.add_argument("--default-price", required=True, help="Default price per ml")
    price_parser.add_argument("--material", default="MATERIAL", help="Material code")
    price_parser.add_argument("--material-price", help="Override price per ml")
    price_parser.add_argument("--material-name", help="Material display name")
    price_parser.add_argument("--mode", choices=["default", "surcharge"], default="default")
    price_parser.add_argument("--name", default="print", help="Job name")
    price_parser.add_argument("--device", default=None, help="Device name")

    args = parser.parse_args()

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "reconcile":
        cmd_reconcile(args)
    elif args.command == "price":
        cmd_price(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()

"""
Pantry CLI: negotiated team ordering with signed payment mandates.

Commands:
    pantry serve-vendor      Run a vendor agent (standard or premium)
    pantry serve-settlement  Run the payment acceptor
    pantry serve-office      Run the ordering agent
    pantry order             Run one ordering flow against configured services
    pantry keygen            Write an Ed25519 payer key
    pantry audit             View the audit trail
    pantry demo              Run the whole flow in-process
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sys
import time
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click
import httpx
import uvicorn

from . import __version__
from .audit import AuditTrail
from .comparator import VendorComparator
from .config import Settings
from .errors import ConfigError
from .flow import OrderFlow, OrderFlowResult
from .mandate import MandateIssuer
from .notifications import WebhookNotifier
from .payment_client import PaymentClient
from .preferences import CsvPreferenceSource, PreferenceSource, StaticPreferenceSource
from .server import create_office_app, create_settlement_app, create_vendor_app
from .settlement import PaymentSettlement, SimulatedSettlementBackend
from .signing import MandateSigner
from .vendor import PROFILES, get_profile
from .vendor_client import VendorClient

logger = logging.getLogger(__name__)

DEFAULT_VENDOR_PORTS = {"standard": 4000, "premium": 4001}


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _settings() -> Settings:
    try:
        return Settings.from_env()
    except ConfigError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)


def _audit_trail(settings: Settings) -> Optional[AuditTrail]:
    try:
        return AuditTrail(path=settings.audit_path, hmac_key=settings.audit_hmac_key)
    except OSError as e:
        logger.warning("Audit trail unavailable at %s: %s", settings.audit_path, e)
        return None


def _preferences(settings: Settings) -> PreferenceSource:
    if settings.preferences_path:
        return CsvPreferenceSource(settings.preferences_path)
    return StaticPreferenceSource()


def build_flow(
    settings: Settings,
    vendor_transports: Optional[dict[str, httpx.AsyncBaseTransport]] = None,
    payment_transport: Optional[httpx.AsyncBaseTransport] = None,
    audit: Optional[AuditTrail] = None,
) -> OrderFlow:
    """Wire an OrderFlow from settings; transports route clients to in-process apps."""
    vendor_transports = vendor_transports or {}
    vendors = [
        VendorClient(name, url, timeout=settings.http_timeout, transport=vendor_transports.get(name))
        for name, url in settings.vendor_urls.items()
    ]
    payments = PaymentClient(
        settings.payment_agent_url,
        signer=MandateSigner.from_file(settings.private_key_path),
        payer_ref=settings.payer_ref,
        poll_interval=settings.poll_interval,
        payment_timeout=settings.payment_timeout,
        mandate_ttl=timedelta(seconds=settings.mandate_ttl),
        timeout=settings.http_timeout,
        transport=payment_transport,
    )
    return OrderFlow(
        comparator=VendorComparator(vendors),
        payments=payments,
        preferences=_preferences(settings),
        notifier=WebhookNotifier(settings.webhook_url),
        audit=audit,
    )


async def _close_clients(flow: OrderFlow) -> None:
    for client in flow.comparator.vendors.values():
        await client.close()
    await flow.payments.close()


def _print_result(result: OrderFlowResult) -> None:
    click.echo("\n📋 Steps:")
    for step in result.steps:
        click.echo(f"   • {step}")
    if result.success:
        click.echo(f"\n✅ Order placed with {result.selected_vendor}")
        click.echo(f"   Cart:     {result.cart_id}")
        click.echo(f"   Payment:  {result.payment_id}")
        click.echo(f"   Total:    ${result.total}")
        if result.delivery_mandate_id:
            click.echo(f"   Split:    ${result.initial_payment} paid, ${result.delivery_payment} on delivery")
            click.echo(f"   Delivery mandate: {result.delivery_mandate_id}")
        if result.comparison is not None:
            click.echo(
                f"   Compared {len(result.comparison.all_quotes)} quote(s), "
                f"saved ${result.comparison.savings} ({result.comparison.percentage_saved}%)"
            )
    else:
        click.echo(f"\n❌ Order failed: {result.error}", err=True)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Log progress to stderr")
def main(verbose: bool):
    """Pantry: negotiated team ordering with signed payment mandates."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command("serve-vendor")
@click.option("--profile", type=click.Choice(sorted(PROFILES)), default="standard", show_default=True)
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=None, help="Default: 4000 standard, 4001 premium")
def serve_vendor(profile: str, host: str, port: Optional[int]):
    """Run a vendor agent."""
    vendor = get_profile(profile)
    port = port or DEFAULT_VENDOR_PORTS[profile]
    click.echo(f"🏪 {vendor.name} listening on http://{host}:{port}")
    uvicorn.run(create_vendor_app(vendor), host=host, port=port)


@main.command("serve-settlement")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=5000, show_default=True)
def serve_settlement(host: str, port: int):
    """Run the payment acceptor."""
    settings = _settings()
    backend = SimulatedSettlementBackend(
        delay=settings.settlement_delay,
        success_rate=settings.settlement_success_rate,
    )
    app = create_settlement_app(PaymentSettlement(MandateIssuer(), backend=backend))
    click.echo(f"💳 Payment acceptor listening on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port)


@main.command("serve-office")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=3000, show_default=True)
def serve_office(host: str, port: int):
    """Run the ordering agent (POST /order-snacks)."""
    settings = _settings()
    flow = build_flow(settings, audit=_audit_trail(settings))
    click.echo(f"🧾 Office agent listening on http://{host}:{port}")
    uvicorn.run(create_office_app(flow), host=host, port=port)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def order(as_json: bool):
    """Run one ordering flow against the configured services."""
    settings = _settings()
    flow = build_flow(settings, audit=_audit_trail(settings))

    async def _run() -> OrderFlowResult:
        try:
            return await flow.run()
        finally:
            await _close_clients(flow)

    result = asyncio.run(_run())
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_result(result)
    if not result.success:
        sys.exit(1)


@main.command()
@click.option("--path", "key_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Key file (default: $PRIVATE_KEY_PATH)")
@click.option("--force", is_flag=True, help="Overwrite an existing key")
def keygen(key_path: Optional[Path], force: bool):
    """Write a new Ed25519 payer key (PKCS8 PEM, mode 0600)."""
    key_path = key_path or _settings().private_key_path
    if key_path is None:
        click.echo("❌ No key path given (use --path or set PRIVATE_KEY_PATH).", err=True)
        sys.exit(1)
    key_path = key_path.expanduser()
    if key_path.exists() and not force:
        click.echo(f"❌ {key_path} already exists (use --force to overwrite).", err=True)
        sys.exit(1)
    signer = MandateSigner.generate()
    signer.save(key_path)
    click.echo(f"✅ Key written to {key_path}")
    click.echo(f"   Public key: {signer.public_key_b64}")


@main.command()
@click.option("--flow-id", default=None, help="Filter by flow ID")
@click.option("--limit", type=int, default=20, help="Number of entries")
def audit(flow_id: Optional[str], limit: int):
    """View the audit trail."""
    settings = _settings()
    trail = AuditTrail(path=settings.audit_path, hmac_key=settings.audit_hmac_key)
    try:
        entries = trail.read_entries(flow_id=flow_id, limit=limit)
    except RuntimeError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    if not entries:
        click.echo("No audit entries found.")
        return

    for entry in entries:
        ts = time.strftime("%H:%M:%S", time.localtime(entry.timestamp))
        marker = {"error": "❌", "warn": "⚠️ "}.get(entry.level, "✅")
        click.echo(f"  {ts} {marker} {entry.flow_id} {entry.event}")


@main.command()
@click.option("--settlement-delay", type=float, default=0.5, show_default=True,
              help="Simulated settlement delay in seconds")
@click.option("--success-rate", type=click.FloatRange(0.0, 1.0), default=1.0, show_default=True,
              help="Simulated settlement success probability")
@click.option("--no-audit", is_flag=True, help="Do not write the audit trail")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def demo(settlement_delay: float, success_rate: float, no_audit: bool, as_json: bool):
    """Run the whole ordering flow in-process, with no network."""
    settings = _settings()
    settings.poll_interval = min(settings.poll_interval, max(settlement_delay / 2, 0.05))

    vendor_apps = {
        profile.name: create_vendor_app(profile)
        for profile in PROFILES.values()
    }
    settlement = PaymentSettlement(
        MandateIssuer(),
        backend=SimulatedSettlementBackend(delay=settlement_delay, success_rate=success_rate),
    )
    settings.vendor_urls = {name: f"http://{_slug(name)}.test" for name in vendor_apps}
    settings.payment_agent_url = "http://settlement.test"
    flow = build_flow(
        settings,
        vendor_transports={name: httpx.ASGITransport(app=app) for name, app in vendor_apps.items()},
        payment_transport=httpx.ASGITransport(app=create_settlement_app(settlement)),
        audit=None if no_audit else _audit_trail(settings),
    )

    if not as_json:
        click.echo("🎬 Pantry Demo: negotiated team order")
        click.echo("=" * 50)
        click.echo(f"   Vendors: {', '.join(vendor_apps)}")

    async def _run() -> OrderFlowResult:
        try:
            return await flow.run()
        finally:
            await _close_clients(flow)
            await settlement.aclose()

    result = asyncio.run(_run())
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_result(result)
    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()

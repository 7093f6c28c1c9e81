# catalog_repricer/orchestrator.py
from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

import aiohttp

from .bulk import BulkSyncCoordinator
from .config import (
    DEFAULT_PAYLOAD_PATH,
    DEFAULT_SECRETS_PATH,
    DEFAULT_SNAPSHOT_PATH,
    Settings,
    load_settings,
)
from .errors import Failure, Ok, OutputError, PipelineError, StageResult
from .feeds import build_sources
from .logger import export_logs_as_jsonl, level_counts, log, set_run_mode
from .models import BulkJob, CompetitorObservation, MergedItem, ResolvedItem
from .offers import SupplierSource, aggregate_offers
from .payload import build_payload
from .pricing import resolve_item
from .reconcile import merge_stats, reconcile
from .scraping import probe_competitor_prices
from .shopify import ShopifyClient
from .workbook import save_snapshot

T = TypeVar("T")

Probe = Callable[[Sequence[MergedItem]], Awaitable[List[CompetitorObservation]]]


@dataclass(frozen=True)
class RunReport:
    catalog_items: int
    offers: int
    priced_items: int
    payload_lines: int
    job: Optional[BulkJob] = None
    payload_path: Optional[Path] = None
    snapshot_path: Optional[Path] = None


async def _stage(name: str, step: Awaitable[T]) -> StageResult[T]:
    """Run one pipeline step, turning fatal errors into a typed Failure."""
    try:
        return Ok(await step)
    except PipelineError as exc:
        log(
            f"stage '{name}' failed: {exc}",
            context="orchestrator",
            extra={"code": exc.code.value, **exc.detail},
            level="ERROR",
        )
        return Failure.from_error(exc)


async def _write_snapshot(resolved: Sequence[ResolvedItem], path: Path) -> Path:
    try:
        return await asyncio.to_thread(save_snapshot, resolved, path)
    except OSError as exc:
        raise OutputError(f"Could not write snapshot to {path}: {exc}", detail={"path": str(path)}) from exc


async def _write_payload(payload: str, path: Path) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(payload, encoding="utf-8")
    except OSError as exc:
        raise OutputError(f"Could not write payload to {path}: {exc}", detail={"path": str(path)}) from exc
    return path


def _no_observations(items: Sequence[MergedItem]) -> List[CompetitorObservation]:
    return [CompetitorObservation() for _ in items]


async def _probe_or_degrade(probe: Probe, merged: Sequence[MergedItem]) -> List[CompetitorObservation]:
    try:
        return await probe(merged)
    except Exception as exc:
        # launch failures leave every observation empty
        log(
            f"competitor probing unavailable: {type(exc).__name__}: {exc}",
            context="orchestrator",
            level="WARNING",
        )
        print(f"⚠️ Competitor probing unavailable ({type(exc).__name__}); pricing without it.")
        return _no_observations(merged)


async def run_pipeline(
    settings: Settings,
    sources: Sequence[SupplierSource],
    client: ShopifyClient,
    *,
    limit: Optional[int] = None,
    dry_run: bool = False,
    skip_probe: bool = False,
    payload_path: Path = DEFAULT_PAYLOAD_PATH,
    snapshot_path: Optional[Path] = None,
    probe: Optional[Probe] = None,
    coordinator: Optional[BulkSyncCoordinator] = None,
) -> StageResult[RunReport]:
    """
    1) Fetch catalog items from Shopify.
    2) Aggregate offers from every supplier feed.
    3) Reconcile items with offers.
    4) Probe competitor prices (unless skipped).
    5) Resolve price points + final price per item.
    6) Optional: XLSX snapshot.
    7) Serialize bulk payload; dry run writes it locally and stops here.
    8) Stage, upload, submit and poll the bulk job.
    """
    print("⬇️ Fetching catalog items...")
    catalog = await _stage("catalog", client.fetch_catalog_items())
    if isinstance(catalog, Failure):
        return catalog
    items = catalog.value[:limit] if limit is not None else catalog.value

    print("⬇️ Fetching supplier offers...")
    offers = await _stage("offers", aggregate_offers(sources))
    if isinstance(offers, Failure):
        return offers

    merged = reconcile(items, offers.value)
    for supplier, count in sorted(merge_stats(merged).items()):
        print(f"   {supplier}: {count}")

    if skip_probe:
        observations = _no_observations(merged)
    else:
        print(f"🔎 Probing competitor prices for {len(merged)} items...")
        observations = await _probe_or_degrade(
            probe or (lambda m: probe_competitor_prices(m, settings.probe)),
            merged,
        )

    resolved: List[ResolvedItem] = [
        resolve_item(m, o, settings.pricing) for m, o in zip(merged, observations)
    ]
    priced = sum(1 for r in resolved if r.final_price is not None)
    log(f"Resolved prices for {priced}/{len(resolved)} items", context="orchestrator")

    if snapshot_path is not None:
        snapshot = await _stage("snapshot", _write_snapshot(resolved, Path(snapshot_path)))
        if isinstance(snapshot, Failure):
            return snapshot
        print(f"💾 Snapshot saved to {snapshot_path}")

    payload, lines = build_payload(resolved, settings.pricing, settings.shopify.location_id)

    report = RunReport(
        catalog_items=len(items),
        offers=len(offers.value),
        priced_items=priced,
        payload_lines=lines,
        snapshot_path=snapshot_path,
    )

    if dry_run:
        written = await _stage("payload", _write_payload(payload, Path(payload_path)))
        if isinstance(written, Failure):
            return written
        payload_path = written.value
        print(f"📝 Dry run: {lines} payload lines written to {payload_path}")
        return Ok(replace(report, payload_path=payload_path))

    if lines == 0:
        print("Nothing to sync: no item received a final price.")
        return Ok(report)

    print(f"⬆️ Submitting bulk update for {lines} items...")
    coordinator = coordinator or BulkSyncCoordinator(client, settings.bulk)
    synced = await _stage("bulk_sync", coordinator.sync(payload))
    if isinstance(synced, Failure):
        return synced
    if isinstance(synced.value, Failure):
        return synced.value

    return Ok(replace(report, job=synced.value.value))


async def run_from_settings(settings: Settings, **kwargs) -> StageResult[RunReport]:
    try:
        sources = build_sources(settings)
    except PipelineError as exc:
        return Failure.from_error(exc)

    async with aiohttp.ClientSession() as session:
        client = ShopifyClient(settings.shopify, session)
        return await run_pipeline(settings, sources, client, **kwargs)


# -------------------------------------------------------------------
# CLI plumbing
# -------------------------------------------------------------------


def build_cli_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description=(
            "Catalog repricer.\n"
            "Default: full run (catalog + supplier feeds → pricing → Shopify bulk update).\n"
            "With --dry-run: write the bulk payload locally and stop."
        )
    )
    p.add_argument(
        "--secrets-path",
        type=str,
        default=str(DEFAULT_SECRETS_PATH),
        help="Path to secrets.json",
    )
    p.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Only price the first N catalog items.",
    )
    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Write the JSONL payload to --payload-path instead of syncing.",
    )
    p.add_argument(
        "--payload-path",
        type=str,
        default=str(DEFAULT_PAYLOAD_PATH),
        help="Where --dry-run writes the payload.",
    )
    p.add_argument(
        "--snapshot-path",
        type=str,
        nargs="?",
        const=str(DEFAULT_SNAPSHOT_PATH),
        default=None,
        help="Write an XLSX snapshot of every resolved item (default path when given without a value).",
    )
    p.add_argument(
        "--skip-probe",
        action="store_true",
        help="Do not launch a browser; price without competitor data.",
    )
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_cli_parser()
    args = parser.parse_args(argv)

    set_run_mode("dry-run" if args.dry_run else "prod")

    print("🔐 Loading settings...")
    try:
        settings = load_settings(Path(args.secrets_path))
    except PipelineError as exc:
        print(f"❌ Run failed [{exc.code.value}]: {exc}")
        return 1

    result = asyncio.run(
        run_from_settings(
            settings,
            limit=args.limit,
            dry_run=args.dry_run,
            skip_probe=args.skip_probe,
            payload_path=Path(args.payload_path),
            snapshot_path=Path(args.snapshot_path) if args.snapshot_path else None,
        )
    )

    log_file = export_logs_as_jsonl()
    print(f"🗒️ Logs written to {log_file}")
    counts = level_counts()
    print(f"   warnings: {counts.get('WARNING', 0)}  errors: {counts.get('ERROR', 0)}")

    if isinstance(result, Failure):
        print(f"❌ Run failed [{result.code.value}]: {result.message}")
        return 1

    report = result.value
    print("\n=== Run summary ===")
    print(f"catalog items : {report.catalog_items}")
    print(f"offers        : {report.offers}")
    print(f"priced items  : {report.priced_items}")
    print(f"payload lines : {report.payload_lines}")
    if report.job is not None:
        print(f"bulk job      : {report.job.id} ({report.job.status.value})")
        print(f"result url    : {report.job.result_url}")
    print("\n✅ Run complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

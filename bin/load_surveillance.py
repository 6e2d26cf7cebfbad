#!/usr/bin/env python3
"""
CWD-Dash Surveillance Loader

Loads CWD sample records from the ArcGIS reporting service using the batch
fetch manager, falling back to a local JSON snapshot when the service yields
nothing, then normalizes the records and writes them out.

Examples:
  python load_surveillance.py --output cwd_samples.parquet
  python load_surveillance.py --config cwd.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import aiohttp
import polars as pl
from tqdm.asyncio import tqdm

from batch_fetch import (
    API_BASE_URL,
    BatchFetchManager,
    FetchConfig,
    FetchState,
    Progress,
    ProgressCallback,
)
from process_records import process_records


class DataLoadError(Exception):
    """Neither the paginated service nor the fallback document produced data."""


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class LoadConfig:
    """Main application configuration."""
    api_url: str = API_BASE_URL
    fallback_path: Optional[str] = "output-data.json"

    batch_size: int = 2000
    max_concurrent: int = 4
    timeout_sec: float = 30.0
    max_retries: int = 3
    backoff_base_sec: float = 1.0
    run_timeout_sec: Optional[float] = None

    # Output options
    output_path: str = "cwd_samples.parquet"
    output_format: Optional[str] = None    # parquet | csv | json; inferred from suffix
    deduplicate: bool = True
    create_overview: bool = True
    show_progress: bool = True

    def to_fetch_config(self) -> FetchConfig:
        return FetchConfig(
            api_url=self.api_url,
            batch_size=self.batch_size,
            max_concurrent=self.max_concurrent,
            timeout_sec=self.timeout_sec,
            max_retries=self.max_retries,
            backoff_base_sec=self.backoff_base_sec,
        )


def parse_args(argv: Optional[list[str]] = None) -> LoadConfig:
    """Parse command line arguments or JSON config file."""
    p = argparse.ArgumentParser(
        description="Load CWD surveillance records from the ArcGIS reporting service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python load_surveillance.py --output cwd_samples.parquet
  python load_surveillance.py --config cwd.json
""",
    )

    p.add_argument("--config", type=str, help="Path to JSON config file")

    # Source
    p.add_argument("--api_url", type=str, default=API_BASE_URL)
    p.add_argument("--fallback", dest="fallback_path", type=str, default="output-data.json")

    # Fetch settings
    p.add_argument("--batch_size", type=int, default=2000)
    p.add_argument("--max_concurrent", type=int, default=4)
    p.add_argument("--timeout", dest="timeout_sec", type=float, default=30.0)
    p.add_argument("--max_retries", type=int, default=3)
    p.add_argument("--backoff_base_sec", type=float, default=1.0)
    p.add_argument("--run_timeout", dest="run_timeout_sec", type=float, default=None)

    # Output
    p.add_argument("--output", dest="output_path", type=str, default="cwd_samples.parquet")
    p.add_argument("--output_format", type=str, default=None, choices=["parquet", "csv", "json"])
    p.add_argument("--no_dedupe", action="store_true")
    p.add_argument("--no_overview", action="store_true")
    p.add_argument("--no_progress", action="store_true")

    args = p.parse_args(argv)

    if args.config:
        with Path(args.config).open("r") as f:
            data = json.load(f)
        return config_from_dict(data)

    return LoadConfig(
        api_url=args.api_url,
        fallback_path=args.fallback_path or None,
        batch_size=args.batch_size,
        max_concurrent=args.max_concurrent,
        timeout_sec=args.timeout_sec,
        max_retries=args.max_retries,
        backoff_base_sec=args.backoff_base_sec,
        run_timeout_sec=args.run_timeout_sec,
        output_path=args.output_path,
        output_format=args.output_format,
        deduplicate=not args.no_dedupe,
        create_overview=not args.no_overview,
        show_progress=not args.no_progress,
    )


def config_from_dict(data: dict[str, Any]) -> LoadConfig:
    """Build a LoadConfig from a JSON config mapping."""
    run_timeout = data.get("run_timeout")
    return LoadConfig(
        api_url=data.get("api_url", API_BASE_URL),
        fallback_path=data.get("fallback", "output-data.json"),
        batch_size=int(data.get("batch_size", 2000)),
        max_concurrent=int(data.get("max_concurrent", 4)),
        timeout_sec=float(data.get("timeout", 30.0)),
        max_retries=int(data.get("max_retries", 3)),
        backoff_base_sec=float(data.get("backoff_base_sec", 1.0)),
        run_timeout_sec=float(run_timeout) if run_timeout is not None else None,
        output_path=data.get("output", "cwd_samples.parquet"),
        output_format=data.get("output_format"),
        deduplicate=bool(data.get("deduplicate", True)),
        create_overview=bool(data.get("create_overview", True)),
        show_progress=bool(data.get("show_progress", True)),
    )


# =============================================================================
# LOADING
# =============================================================================

@dataclass
class LoadResult:
    """Records plus where they came from."""
    records: list[dict[str, Any]]
    source: str                           # "api" | "fallback"
    fetch_state: Optional[FetchState] = None
    api_error: Optional[str] = None


def load_fallback(path: str) -> list[dict[str, Any]]:
    """Read a static `{"features": [{"attributes": {...}}]}` document."""
    fp = Path(path)
    if not fp.exists():
        raise FileNotFoundError(f"Fallback file not found: {fp}")

    with fp.open("r") as f:
        data = json.load(f)

    features = data.get("features") if isinstance(data, dict) else None
    if not features:
        raise ValueError("No features found in local data")

    return [feature.get("attributes", {}) for feature in features]


async def load_records(
    cfg: LoadConfig,
    on_progress: Optional[ProgressCallback] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> LoadResult:
    """
    Fetch all records from the service, falling back to the local document.

    The fallback is consulted when the paginated fetch raises or aggregates
    zero records. Raises DataLoadError when both sources fail.
    """
    manager: Optional[BatchFetchManager] = None
    api_error: Optional[str] = None

    async def _fetch(s: aiohttp.ClientSession) -> list[dict[str, Any]]:
        nonlocal manager
        manager = BatchFetchManager.from_config(s, cfg.to_fetch_config())
        run = manager.fetch_all(on_progress)
        if cfg.run_timeout_sec is not None:
            return await asyncio.wait_for(run, timeout=cfg.run_timeout_sec)
        return await run

    try:
        if session is not None:
            records = await _fetch(session)
        else:
            async with aiohttp.ClientSession(headers={"User-Agent": "CWD-Dash/1.0"}) as s:
                records = await _fetch(s)

        if records:
            print(f"[Load] ✓ Loaded {len(records)} total records from API")
            return LoadResult(records=records, source="api",
                              fetch_state=manager.state if manager else None)
        api_error = "No features found in API response"
    except asyncio.TimeoutError:
        api_error = f"Run timed out after {cfg.run_timeout_sec}s"
    except Exception as e:
        api_error = str(e)

    print(f"[Warning] Failed to load from API, falling back to local data: {api_error}")

    if not cfg.fallback_path:
        raise DataLoadError(f"Failed to load data from API and no fallback configured: {api_error}")

    try:
        records = load_fallback(cfg.fallback_path)
    except Exception as e:
        print(f"[Load] Failed to load local data: {e}")
        raise DataLoadError("Failed to load data from both API and local file") from e

    print(f"[Load] Loaded {len(records)} records from fallback {cfg.fallback_path}")
    return LoadResult(records=records, source="fallback",
                      fetch_state=manager.state if manager else None, api_error=api_error)


async def load_data(
    cfg: LoadConfig,
    on_progress: Optional[ProgressCallback] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> list[dict[str, Any]]:
    """Flat ordered list of raw attribute mappings for normalization."""
    result = await load_records(cfg, on_progress=on_progress, session=session)
    return result.records


# =============================================================================
# OUTPUT
# =============================================================================

def _output_format(cfg: LoadConfig) -> str:
    if cfg.output_format:
        return cfg.output_format
    suffix = Path(cfg.output_path).suffix.lower()
    if suffix == ".csv":
        return "csv"
    if suffix == ".json":
        return "json"
    return "parquet"


def write_table(df: pl.DataFrame, cfg: LoadConfig) -> str:
    """Write the processed frame in the configured format."""
    out = Path(cfg.output_path)
    out.parent.mkdir(parents=True, exist_ok=True)

    fmt = _output_format(cfg)
    if fmt == "parquet":
        df.write_parquet(out)
    elif fmt == "csv":
        df.write_csv(out)
    elif fmt == "json":
        df.write_json(out)
    else:
        raise ValueError(f"Unsupported output format: {fmt}")

    return str(out.resolve())


def write_overview(
    *,
    cfg: LoadConfig,
    result: LoadResult,
    processed: pl.DataFrame,
    elapsed_sec: float,
) -> str:
    """Write JSON overview report next to the output table."""
    state = result.fetch_state
    report = {
        "script_inputs": {
            "api_url": cfg.api_url,
            "fallback": cfg.fallback_path,
            "batch_size": cfg.batch_size,
            "max_concurrent": cfg.max_concurrent,
            "timeout_sec": cfg.timeout_sec,
            "max_retries": cfg.max_retries,
            "run_timeout_sec": cfg.run_timeout_sec,
            "deduplicate": cfg.deduplicate,
        },
        "summary": {
            "source": result.source,
            "raw_records": len(result.records),
            "processed_records": processed.height,
            "pages_dispatched": len(state.dispatched) if state else 0,
            "failed_offsets": sorted(state.failed) if state else [],
            "discarded_records": state.discarded if state else 0,
            "api_error": result.api_error,
            "elapsed_sec": round(elapsed_sec, 3),
        },
        "timestamp_local": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime()),
    }

    out = Path(cfg.output_path)
    overview_path = out.with_name(out.stem + "_overview.json")
    with overview_path.open("w") as f:
        json.dump(report, f, indent=2)

    return str(overview_path.resolve())


class TqdmProgress:
    """Progress observer that drives a tqdm bar in percent units."""

    def __init__(self, desc: str = "Loading"):
        self.pbar = tqdm(total=100, desc=desc, unit="%")
        self._last = 0

    def __call__(self, progress: Progress) -> None:
        self.pbar.update(progress.percent - self._last)
        self._last = progress.percent
        self.pbar.set_postfix(loaded=progress.loaded, total=progress.estimated_total)

    def close(self) -> None:
        self.pbar.close()


# =============================================================================
# MAIN
# =============================================================================

async def run(cfg: LoadConfig) -> int:
    print("=" * 72)
    print("CWD-Dash Surveillance Loader")
    print("=" * 72)

    observer = TqdmProgress() if cfg.show_progress else None
    start = time.monotonic()

    try:
        result = await load_records(cfg, on_progress=observer)
    except DataLoadError as e:
        print(f"[Load] {e}")
        return 1
    finally:
        if observer is not None:
            observer.close()

    elapsed = time.monotonic() - start
    processed = process_records(result.records, deduplicate=cfg.deduplicate)

    print("\n" + "=" * 72)
    print("FINAL SUMMARY")
    print("=" * 72)
    print(f"Source:                {result.source}")
    print(f"Raw records:           {len(result.records)}")
    print(f"Processed records:     {processed.height}")
    if result.fetch_state is not None and result.fetch_state.failed:
        print(f"Failed offsets:        {sorted(result.fetch_state.failed)}")
    print(f"Elapsed time:          {elapsed:.2f}s")

    table_path = write_table(processed, cfg)
    print(f"[Report] Table: {table_path}")

    if cfg.create_overview:
        try:
            overview = write_overview(cfg=cfg, result=result, processed=processed, elapsed_sec=elapsed)
            print(f"[Report] Overview: {overview}")
        except OSError as e:
            print(f"[Report] Failed: {e}")

    print("=" * 72)
    return 0


async def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point. SIGINT/SIGTERM cancel the running load."""
    cfg = parse_args(argv)
    task = asyncio.ensure_future(run(cfg))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, task.cancel)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        return await task
    except asyncio.CancelledError:
        print("\n[Shutdown] Interrupt received. Load cancelled.")
        return 130


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()

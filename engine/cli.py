"""Command line scenario runner: open a page, execute a test, check its assertions."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

from testplan.catalog import TestCatalog, load_catalog

from .config import RunConfig, load_config
from .errors import ExecutionError
from .executor import ScenarioExecutor

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a data-driven test from a catalog")
    parser.add_argument("--catalog", required=True, help="Path to the TOML test catalog")
    parser.add_argument("--test", required=True, help="Test id to execute")
    parser.add_argument("--start-page", help="Page to open before executing (defaults to the test's start_page)")
    parser.add_argument("--config", help="Path to settings.toml")
    parser.add_argument("--env", help="Settings overlay to apply, e.g. qa or staging")
    parser.add_argument("--run-id", help="Identifier for the run directory")
    parser.add_argument(
        "--on-row-failure",
        choices=("abort", "continue"),
        help="Stop at the first failed dataset row or keep going",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


async def run_scenario(
    catalog: TestCatalog,
    config: RunConfig,
    test_id: str,
    *,
    start_page: Optional[str] = None,
    run_id: Optional[str] = None,
    on_row_failure: Optional[str] = None,
) -> bool:
    """Run one scenario end to end; returns ``True`` when it passed."""

    executor = ScenarioExecutor(catalog, config, run_id=run_id)
    async with executor:
        page = start_page or catalog.test(test_id).start_page
        try:
            if page:
                await executor.navigate_to(page)
            await executor.execute_test(test_id, on_row_failure=on_row_failure)
            await executor.assert_test(test_id)
        except ExecutionError as exc:
            log.error("Scenario '%s' failed [%s]: %s", test_id, exc.code, exc)
            await _failure_screenshot(executor)
            return False
    log.info("Scenario '%s' passed", test_id)
    return True


async def _failure_screenshot(executor: ScenarioExecutor) -> None:
    if not executor.config.screenshots_on_failure or executor.paths is None:
        return
    target = executor.paths["shots"] / "failure.png"
    try:
        await executor.capture_screenshot(target)
    except Exception as exc:
        log.warning("Could not capture failure screenshot: %s", exc)
        return
    log.info("Failure screenshot written to %s", target)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    catalog_path = Path(args.catalog)
    if not catalog_path.exists():
        parser.error(f"Catalog file {catalog_path} does not exist")

    try:
        config = load_config(Path(args.config) if args.config else None, env=args.env)
        catalog = load_catalog(catalog_path)
        catalog.test(args.test)
    except (ExecutionError, ValueError) as exc:
        parser.error(str(exc))

    passed = asyncio.run(
        run_scenario(
            catalog,
            config,
            args.test,
            start_page=args.start_page,
            run_id=args.run_id,
            on_row_failure=args.on_row_failure,
        )
    )
    return 0 if passed else 1


if __name__ == "__main__":
    raise SystemExit(main())

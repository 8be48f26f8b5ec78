"""Terminal client that reuses the in-process suggestion and verification logic."""
from __future__ import annotations

import argparse
import asyncio
from functools import lru_cache
from pathlib import Path
from typing import Iterable

from productcheck.config import settings
from productcheck.models import SessionState, SuggestionState, VerificationMode, VerificationReport
from productcheck.service import ProductLookupService, build_service

GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
RESET = "\033[0m"

STATE_COLORS = {
    SessionState.RESOLVED: GREEN,
    SessionState.PARTIAL: YELLOW,
    SessionState.FAILED: RED,
}


@lru_cache(maxsize=1)
def get_service() -> ProductLookupService:
    return build_service(settings)


async def perform_query(query: str) -> SuggestionState:
    return await get_service().get_suggestions(query)


async def perform_verify(query: str, mode: VerificationMode, barcode: str | None = None) -> VerificationReport:
    return await get_service().verify_product(query, mode, barcode=barcode)


async def perform_pick(state: SuggestionState, index: int) -> VerificationReport:
    service = get_service()
    report = await service.select_suggestion(state.item_at(index))
    session = service.session
    if session is not None and session.background is not None:
        # Print the report after the catalog check has supplemented it.
        return await session.settled()
    return report


def pretty_print_suggestions(state: SuggestionState) -> None:
    print(f"Query: {state.query} | internal: {len(state.suggestions)} | external: {len(state.external_products)}")
    for idx, name in enumerate(state.suggestions):
        print(f"  {idx:02d}. {GREEN}[catalog]{RESET} {name}")
    offset = len(state.suggestions)
    for idx, product in enumerate(state.external_products, start=offset):
        brand = f" ({product.brand})" if product.brand else ""
        print(f"  {idx:02d}. [{product.source}] {product.name}{brand} conf={round(product.confidence * 100)}%")


def pretty_print_report(report: VerificationReport) -> None:
    color = STATE_COLORS.get(report.state, "")
    print(f"Verify: {report.query} | mode: {report.mode.value} | state: {color}{report.state.value}{RESET}")
    if report.internal is not None:
        internal = report.internal
        print(
            f"  catalog: {internal.result} | manufacturer: {internal.manufacturer} | "
            f"registered: {internal.registration_date} | cert: {internal.certification_number}"
        )
        for product in internal.similar_products:
            print(f"    similar: {product.name}")
    if report.external is not None:
        external = report.external
        name = external.product.name if external.product is not None else "-"
        print(f"  external: found={external.found} | {external.source} | {name} | {external.display_confidence}%")
    for status in report.sources:
        detail = f" ({status.detail})" if status.detail else ""
        print(f"    - {status.name}: {status.status}{detail}")
    if report.risk is not None:
        print(f"  risk: {report.risk.overall_risk}")
        for factor in report.risk.risk_factors:
            print(f"    ! {factor}")
    for error in report.errors:
        print(f"  {RED}error:{RESET} {error}")


def interactive_shell(mode: VerificationMode) -> None:
    print("Interactive product lookup. Type a name for suggestions, '#N' to pick, '?name' to verify, 'exit' to quit.")
    last = SuggestionState()
    while True:
        try:
            line = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return
        if not line:
            continue
        if line.lower() in {"exit", "quit"}:
            return
        if line.startswith("#"):
            try:
                report = asyncio.run(perform_pick(last, int(line[1:])))
            except (ValueError, IndexError):
                print(f"  no suggestion {line[1:]!r}")
                continue
            pretty_print_report(report)
        elif line.startswith("?"):
            pretty_print_report(asyncio.run(perform_verify(line[1:].strip(), mode)))
        else:
            last = asyncio.run(perform_query(line))
            pretty_print_suggestions(last)


def batch_mode(file_path: Path, mode: VerificationMode) -> None:
    with file_path.open("r", encoding="utf-8") as fh:
        for line in fh:
            query = line.strip()
            if not query:
                continue
            pretty_print_report(asyncio.run(perform_verify(query, mode)))


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="CLI client for product suggestions and verification")
    parser.add_argument("query", nargs="?", help="Query string. If omitted, starts REPL mode.")
    parser.add_argument(
        "--verify",
        choices=[mode.value for mode in VerificationMode],
        help="Verify the query in the given mode instead of listing suggestions",
    )
    parser.add_argument("--barcode", help="Barcode to verify together with the query")
    parser.add_argument("--batch", type=Path, help="File with product names to verify line by line")
    args = parser.parse_args(list(argv) if argv is not None else None)
    mode = VerificationMode(args.verify or VerificationMode.COMBINED.value)

    if args.batch:
        batch_mode(args.batch, mode)
        return 0
    if args.verify or args.barcode:
        pretty_print_report(asyncio.run(perform_verify(args.query or "", mode, args.barcode)))
        return 0
    if args.query:
        pretty_print_suggestions(asyncio.run(perform_query(args.query)))
        return 0
    interactive_shell(mode)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

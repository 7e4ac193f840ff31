"""
main.py

Command-line entry point: scan local listening services into the
discovery log, or turn an existing log into a device inventory.
"""

import argparse
import sys
from typing import List

from tabulate import tabulate
from colorama import Fore, Style, init as colorama_init

from scanner.runner import ScanRunner, ScanResult
from scanner.sources import build_sources, list_sources
from parser.log_parser import DiscoveryLogParser, ParseError
from parser.records import ServiceRecord, STATUS_REFUSED, STATUS_SUCCESS, STATUS_TIMEOUT
from report_generators import InventoryJSONGenerator
from utils import app_logger, config
from utils.logger import LoggerSetup

# Initialize colorama for Windows compatibility
colorama_init(autoreset=True)


def setup_argument_parser() -> argparse.ArgumentParser:
    """Configure command-line argument parser."""
    parser = argparse.ArgumentParser(
        description="ServiceDiscovery - local listening service scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                  # Scan with all enabled sources
  %(prog)s --disable docker --disable kubernetes
  %(prog)s --workers 20 --timeout-ms 250    # Wider pool, shorter probes
  %(prog)s --dry-run                        # List candidates without probing
  %(prog)s --list-sources                   # Show available sources
  %(prog)s --inventory /tmp/discovery.log   # Build device JSON from a log
        """
    )

    parser.add_argument(
        "--host",
        type=str,
        default=config.get("scan.host", "127.0.0.1"),
        help="Address probed for every candidate port (default: 127.0.0.1)"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=config.get("scan.workers", 10),
        help="Maximum number of simultaneous probes"
    )

    parser.add_argument(
        "--timeout-ms",
        type=int,
        default=config.get("scan.probe_timeout_ms", 500),
        help="Per-probe network timeout in milliseconds"
    )

    parser.add_argument(
        "--scan-timeout",
        type=float,
        default=config.get("scan.scan_timeout_s", 120),
        help="Global scan deadline in seconds, covering enumeration and probing"
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help=f"Discovery log path (default: {config.discovery_log_path()})"
    )

    parser.add_argument(
        "--disable",
        action="append",
        default=[],
        choices=list(list_sources().keys()),
        metavar="SOURCE",
        help="Disable a source (repeatable)"
    )

    parser.add_argument(
        "--list-sources",
        action="store_true",
        help="List available sources and exit"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Enumerate candidates without probing or writing the log"
    )

    parser.add_argument(
        "--inventory",
        type=str,
        metavar="LOGFILE",
        help="Parse a discovery log into a device inventory JSON and exit"
    )

    parser.add_argument(
        "--inventory-out",
        type=str,
        metavar="PATH",
        help="Inventory JSON output path (default: <inventory_dir>/<device>.json)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=config.get("logging.verbose", False),
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-essential output"
    )

    return parser


def print_header(title: str, quiet: bool = False) -> None:
    """Print a formatted section header with color."""
    if not quiet:
        print(f"\n{Fore.CYAN}{'=' * 60}")
        print(f"{title}")
        print(f"{'=' * 60}{Style.RESET_ALL}")


def print_sources() -> None:
    """Display available sources and whether config enables them."""
    print(f"\n{Fore.CYAN}Available Sources:")
    print("=" * 60)

    for name, description in list_sources().items():
        enabled = config.get(f"sources.{name}", True)
        state = f"{Fore.GREEN}on {Style.RESET_ALL}" if enabled else f"{Fore.RED}off{Style.RESET_ALL}"
        print(f"\n{Fore.YELLOW}{name:12}{Style.RESET_ALL} [{state}] - {description}")

    print(f"\n{'=' * 60}{Style.RESET_ALL}")


def _color_status(status: str) -> str:
    if status == STATUS_SUCCESS:
        return f"{Fore.GREEN}{status}{Style.RESET_ALL}"
    if status == STATUS_REFUSED:
        return f"{Fore.RED}{status}{Style.RESET_ALL}"
    if status == STATUS_TIMEOUT:
        return f"{Fore.YELLOW}{status}{Style.RESET_ALL}"
    return status or "-"


def print_records(records: List[ServiceRecord]) -> None:
    """Summary table of discovered services."""
    if not records:
        print("No listening services discovered.")
        return

    table_data = [
        [
            r.port,
            r.protocol,
            r.service_name,
            _color_status(r.status),
            "-" if r.latency_ms is None else r.latency_ms,
            r.source,
            (r.note[:40] + "...") if len(r.note) > 43 else r.note,
        ]
        for r in records
    ]
    print(tabulate(
        table_data,
        headers=["Port", "Proto", "Service", "Status", "ms", "Source", "Note"],
        tablefmt="grid",
    ))


def run_inventory(log_file: str, output_path: str, quiet: bool) -> int:
    """Parse a discovery log and write the device inventory JSON."""
    try:
        inventory = DiscoveryLogParser().parse(log_file)
    except (FileNotFoundError, ParseError) as e:
        app_logger.error(f"Failed to parse discovery log: {e}")
        if not quiet:
            print(f"\n{Fore.RED}[!] Parse Error:{Style.RESET_ALL} {e}")
        return 1

    try:
        path = InventoryJSONGenerator().generate(inventory, output_path)
    except OSError as e:
        app_logger.error(f"Failed to save inventory: {e}")
        if not quiet:
            print(f"\n{Fore.RED}[!] Write Error:{Style.RESET_ALL} {e}")
        return 1

    if not quiet:
        counts = {k: len(v) for k, v in inventory.buckets.items() if v}
        print(f"{Fore.GREEN}[+]{Style.RESET_ALL} Device    : {Fore.YELLOW}{inventory.name}{Style.RESET_ALL}")
        print(f"{Fore.GREEN}[+]{Style.RESET_ALL} Services  : {counts or 'none'}")
        print(f"{Fore.GREEN}[+]{Style.RESET_ALL} Inventory : {path}")
    return 0


def handle_scan_result(scan_result: ScanResult, quiet: bool = False) -> bool:
    """Handle scan result, logging appropriately."""
    if not scan_result.success:
        app_logger.error(f"Scan failed: {scan_result.error_message}")
        if not quiet:
            print(f"\n{Fore.RED}[!] Scan Failed:{Style.RESET_ALL} {scan_result.error_message}")
        return False

    return True


def main() -> int:
    """Main execution function."""
    parser = setup_argument_parser()
    args = parser.parse_args()

    if args.list_sources:
        print_sources()
        return 0

    # Configure logging
    if args.verbose:
        LoggerSetup.set_verbose(True)
    elif args.quiet:
        app_logger.setLevel("WARNING")

    quiet = args.quiet

    if args.inventory:
        return run_inventory(args.inventory, args.inventory_out, quiet)

    try:
        app_logger.info("=== ServiceDiscovery Started ===")

        sources = build_sources(disabled=args.disable)
        runner = ScanRunner(
            sources=sources,
            host=args.host,
            timeout_ms=args.timeout_ms,
            scan_timeout=args.scan_timeout,
            workers=args.workers,
            log_file=args.log_file,
            show_progress=not quiet,
            echo=not args.dry_run,
        )

        if not quiet:
            print(f"{Fore.CYAN}[i]{Style.RESET_ALL} Sources: {Fore.YELLOW}{', '.join(s.name for s in sources) or 'none'}{Style.RESET_ALL}")
            print(f"{Fore.CYAN}[i]{Style.RESET_ALL} Workers: {Fore.YELLOW}{args.workers}{Style.RESET_ALL}, "
                  f"probe timeout: {Fore.YELLOW}{args.timeout_ms} ms{Style.RESET_ALL}")

        scan_result = runner.run_scan(dry_run=args.dry_run, verbose=args.verbose)

        if not handle_scan_result(scan_result, quiet):
            return 1

        if scan_result.dry_run:
            print_header("Candidates (not probed)", quiet)
            if not quiet:
                print(tabulate(
                    [[c.port, c.protocol, c.service_name, c.source] for c in scan_result.candidates],
                    headers=["Port", "Proto", "Service", "Source"],
                    tablefmt="grid",
                ))
            return 0

        print_header("Discovered Services", quiet)
        if not quiet:
            print_records(scan_result.records)
            print(f"\n{Fore.GREEN}[+]{Style.RESET_ALL} Host       : {scan_result.hostname}")
            print(f"{Fore.GREEN}[+]{Style.RESET_ALL} Candidates : {len(scan_result.candidates)}")
            print(f"{Fore.GREEN}[+]{Style.RESET_ALL} Records    : {len(scan_result.records)}")
            print(f"{Fore.GREEN}[+]{Style.RESET_ALL} Log file   : {scan_result.log_file}")
            print(f"\n{Fore.GREEN}✓ Scan complete in {scan_result.duration:.2f}s{Style.RESET_ALL}\n")

        app_logger.info("=== ServiceDiscovery Completed Successfully ===")
        return 0

    except KeyboardInterrupt:
        app_logger.warning("Scan interrupted by user")
        if not quiet:
            print(f"\n\n{Fore.YELLOW}[!] Scan interrupted by user{Style.RESET_ALL}")
        return 130

    except Exception as e:
        app_logger.error(f"Unexpected error: {e}", exc_info=True)
        if not quiet:
            print(f"\n{Fore.RED}[!] Error:{Style.RESET_ALL} {e}")
        return 1


def cli() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    sys.exit(main())

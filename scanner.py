#!/usr/bin/env python3

import argparse
import csv
import logging
import os
import sys
import time

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from link_layer import VendorLookup
from orchestrator import ScanSession
from scan_models import CSV_HEADER, HostEvent, ProgressEvent, ScanConfigError, ScanFinished
from tracer import MAX_HOPS, RouteTracer
from utils import build_scan_request, get_default_subnet_prefix, is_privileged

logger = logging.getLogger("scanner")

POLL_INTERVAL = 0.1
WEB_PORTS = {80: "http", 443: "https"}


def configure_logging(console, verbose=False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose)],
        force=True,
    )
    # scapy is chatty at INFO about routes and interfaces
    logging.getLogger("scapy").setLevel(logging.ERROR)


def render_host(console, result):
    """Prints one host as it is discovered."""
    console.print(f"IP: {result.ip}", style="bright_yellow", markup=False, highlight=False)
    console.print(f"FQDN: {result.fqdn_text}", style="bright_green", markup=False, highlight=False)
    console.print(f"MAC: {result.mac_text}", style="bright_cyan", markup=False, highlight=False)
    if result.ssdp.ok:
        console.print(f"SSDP: {result.ssdp_text}", style="white", markup=False, highlight=False)
    if result.has_open_ports:
        for port in result.open_ports:
            console.print(f"Port {port} open", style="red")
            scheme = WEB_PORTS.get(port)
            if scheme:
                url = f"{scheme}://{result.ip}/"
                console.print(f"Open [link={url}]{url}[/link]", style="bold bright_yellow")
    else:
        console.print("No common ports open", style="bright_black")
    console.print("---------------------------------", highlight=False)


def display_results(results, vendor_lookup, console, hide_closed=False):
    """
    Displays the scan results in a table.
    """
    shown = [r for r in results if r.has_open_ports or not hide_closed]
    if not shown:
        console.print("No devices found.")
        return

    table = Table(title="Live Devices on Network")
    table.add_column("#", style="dim", width=3)
    table.add_column("IP Address", style="cyan", no_wrap=True)
    table.add_column("FQDN", style="green")
    table.add_column("MAC Address", style="magenta")
    table.add_column("Vendor", style="green")
    table.add_column("Open Ports", style="red")
    table.add_column("SSDP", style="white")

    for i, result in enumerate(sorted(shown, key=lambda r: tuple(int(o) for o in r.ip.split("."))), 1):
        table.add_row(
            str(i),
            result.ip,
            escape(result.fqdn_text),
            result.mac_text,
            escape(vendor_lookup.lookup(result.mac)),
            result.open_ports_text or "-",
            escape(result.ssdp_text),
        )

    console.print(table)


def write_csv(results, stream):
    """Writes the results with a fixed header; the csv module handles quoting."""
    writer = csv.writer(stream)
    writer.writerow(CSV_HEADER)
    for result in results:
        writer.writerow(result.as_row())


def save_to_csv(results, filename, console):
    """
    Saves the scan results to a CSV file.
    """
    dir_name = os.path.dirname(filename)
    try:
        if dir_name:
            os.makedirs(dir_name, exist_ok=True)
        with open(filename, "w", newline="") as csvfile:
            write_csv(results, csvfile)
    except OSError as e:
        console.print(f"Error exporting: {e}")
        return False
    console.print(f"Exported to {filename}")
    return True


def run_scan_cycle(args, console, prober=None):
    """Runs one scan, streaming hosts as they are found, then shows the summary and exports."""
    subnet = args.subnet if args.subnet is not None else get_default_subnet_prefix()
    try:
        request = build_scan_request(
            subnet,
            start=args.start,
            end=args.end,
            ports=args.ports,
            threads=args.threads,
            hide_closed=args.hide_closed,
        )
    except ScanConfigError as e:
        console.print(str(e), markup=False)
        return False
    logger.debug("Scan request: %s", request)

    if not is_privileged():
        console.print(
            "Warning: ICMP ping needs root/Administrator privileges. "
            "Without them every host will appear down; try running with sudo.",
            style="yellow",
        )

    session = ScanSession(request, prober=prober)
    vendor_lookup = VendorLookup(enabled=not args.no_vendor)

    console.print(f"Scanning {request.subnet}.{request.start_host}-{request.end_host}...")
    finished = None
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Scanning", total=request.total or 1)
        session.start()
        while finished is None:
            for event in session.drain():
                if isinstance(event, ProgressEvent):
                    progress.update(task, completed=event.completed)
                elif isinstance(event, HostEvent):
                    if event.display:
                        render_host(progress.console, event.result)
                elif isinstance(event, ScanFinished):
                    finished = event
            if finished is None:
                time.sleep(POLL_INTERVAL)
        progress.update(task, completed=request.total or 1)
    session.join()

    results = list(finished.results)
    console.print("Scan complete.")
    display_results(results, vendor_lookup, console, hide_closed=request.hide_closed)

    if args.csv:
        save_to_csv(results, args.csv, console)
    return True


def run_trace(args, console, tracer=None):
    """Traces the route to one host and prints a line per hop."""
    target = (args.target or "").strip()
    if not target:
        console.print("Invalid IP/Host.")
        return False

    tracer = tracer or RouteTracer()
    with Progress(console=console, transient=True) as progress:
        task = progress.add_task(f"Tracing {target}", total=MAX_HOPS)
        hops = tracer.trace(
            target,
            lambda ttl, max_hops: progress.update(task, completed=ttl, total=max_hops),
        )

    for hop in hops:
        console.print(str(hop), markup=False, highlight=False)
    if hops and hops[-1].reached:
        console.print("Trace complete.")
    return not (hops and hops[-1].error)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="netsweep",
        description="Discover live hosts on a local subnet and trace routes.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug logging."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Scan a range of hosts on a subnet.")
    scan.add_argument(
        "--subnet",
        type=str,
        help="First three octets of the subnet (e.g., 192.168.1) or a CIDR. Autodetected if not provided."
    )
    scan.add_argument(
        "--start",
        default="1",
        help="First host number to scan (default: 1)."
    )
    scan.add_argument(
        "--end",
        default="254",
        help="Last host number to scan (default: 254)."
    )
    scan.add_argument(
        "--ports",
        default="22,80,443",
        help="Comma separated TCP ports to check (default: 22,80,443)."
    )
    scan.add_argument(
        "--threads",
        default="16",
        help="Number of hosts probed in parallel (default: 16)."
    )
    scan.add_argument(
        "--hide-closed",
        action="store_true",
        help="Do not display hosts without any open port (they are still exported)."
    )
    scan.add_argument(
        "--csv",
        type=str,
        help="Output CSV file path (e.g., logs/scan.csv)."
    )
    scan.add_argument(
        "--no-vendor",
        action="store_true",
        help="Skip MAC address vendor lookup."
    )

    trace = subparsers.add_parser("trace", help="Trace the route to a host.")
    trace.add_argument("target", help="IP address or hostname to trace.")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    console = Console()
    configure_logging(console, args.verbose)

    try:
        if args.command == "trace":
            ok = run_trace(args, console)
        else:
            ok = run_scan_cycle(args, console)
    except KeyboardInterrupt:
        console.print("\nStopped by user.")
        return 130
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())

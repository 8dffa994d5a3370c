#!/usr/bin/env python3
"""
Minimal CPen Link Test

This script exercises the CPen link from the command line without the
desktop shell. Use this for development and bench testing with a real
pen and a running storage service.

Usage:
    python cpen_minimal_test.py [scan|totp|id|download <path>|upload <file> [target]]

Commands:
    scan     - Scan for BLE devices and mark the ones that look like a CPen
    totp     - Connect to the pen and print a one-time code
    id       - Connect to the pen and print its identifier
    download - Download a remote file into data/downloads
    upload   - Upload a local file, optionally into a target folder
"""

import sys
import os
import asyncio

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from cpenlink.app import CPenApp
from cpenlink.config import CPenConfig
from cpenlink.link_adapter import BLELinkAdapter


async def scan_pens():
    """Scan for nearby BLE devices"""
    config = CPenConfig()
    print("=" * 60)
    print("CPen Scanner")
    print("=" * 60)
    print(f"Scanning for {config.scan_duration:.0f} seconds...")
    print()

    try:
        peers = await BLELinkAdapter().scan(config.scan_duration)
    except Exception as e:
        print(f"ERROR: {e}")
        return

    if not peers:
        print("No BLE devices found.")
        return

    print(f"Found {len(peers)} device(s):\n")
    for i, peer in enumerate(peers, 1):
        marker = "  <- CPen" if peer.matches_prefix(config.device_name_prefix) else ""
        print(f"{i}. {peer.name}{marker}")
        print(f"   Address: {peer.address}")
        print(f"   RSSI: {peer.rssi if peer.rssi is not None else 'N/A'} dBm")
        print()

    print("=" * 60)


def print_result(label, result):
    if result.success:
        print(f"{label}: {result.data}")
    else:
        print(f"{label} failed ({result.kind}): {result.error}")
    return result.success


async def wait_for_transfer(app, result, poll):
    """Poll a started transfer until it leaves the active state"""
    if not result.success:
        print(f"ERROR ({result.kind}): {result.error}")
        return False

    transfer_id = result.data
    while True:
        progress = await poll(transfer_id)
        if not progress.success:
            print(f"ERROR: {progress.error}")
            return False

        snapshot = progress.data
        print(f"\r  {snapshot['percent']:6.2f}%  {snapshot['chunks_completed']}/{snapshot['chunks_total']} chunks"
              f"  {snapshot['speed_kbps']:.1f} KB/s", end="", flush=True)

        if snapshot["status"] in ("completed", "error", "paused"):
            print()
            print(f"  Status: {snapshot['status']}")
            if snapshot.get("error"):
                print(f"  Error: {snapshot['error']}")
            if snapshot.get("sha256"):
                print(f"  SHA-256: {snapshot['sha256']}")
            return snapshot["status"] == "completed"

        await asyncio.sleep(0.5)


async def run_command(command, args):
    app = CPenApp()
    try:
        if command == "totp":
            return print_result("TOTP", await app.get_code())
        if command == "id":
            return print_result("Device ID", await app.get_device_id())
        if command == "download":
            return await wait_for_transfer(app, await app.start_download(args[0]), app.poll_download_progress)
        if command == "upload":
            target = args[1] if len(args) > 1 else None
            return await wait_for_transfer(app, await app.start_upload(args[0], target), app.poll_upload_progress)
    finally:
        await app.cleanup()


def show_help():
    """Show usage information"""
    print("""
CPen Link Minimal Test

Usage:
    python cpen_minimal_test.py [command] [arguments]

Commands:
    scan                     - Scan for nearby BLE devices
    totp                     - Print a one-time code from the pen
    id                       - Print the pen's identifier
    download <path>          - Download a remote file
    upload <file> [target]   - Upload a local file
    help                     - Show this help message

The storage endpoint defaults to http://localhost:8005 and can be
changed with the CAMFC_BASE and CAMFC_PORT environment variables.
    """)


def main():
    """Main entry point"""
    if len(sys.argv) < 2:
        command = "scan"  # Default command
    else:
        command = sys.argv[1].lower()
    args = sys.argv[2:]

    if command == "scan":
        asyncio.run(scan_pens())
    elif command in ("totp", "id"):
        if not asyncio.run(run_command(command, args)):
            sys.exit(1)
    elif command in ("download", "upload") and args:
        if not asyncio.run(run_command(command, args)):
            sys.exit(1)
    elif command == "help":
        show_help()
    else:
        print(f"Unknown command: {command}")
        show_help()
        sys.exit(1)


if __name__ == "__main__":
    main()

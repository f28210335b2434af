# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
inkseal CLI - sign, publish and inspect versioned content.

Usage:
    python -m inkseal keygen                          # Create the site key pair
    python -m inkseal publish draft.md posts/hello.md # Sign and publish
    python -m inkseal republish posts/hello.md draft.md
    python -m inkseal history posts/hello.md          # List versions
    python -m inkseal show posts/hello.md sha256:...  # Print an old version
    python -m inkseal check posts/hello.md            # Audit the history log
    python -m inkseal verify posts/hello.md           # Exit 0 valid, 1 invalid, 2 unverifiable
    python -m inkseal verify-url https://alice.example/posts/hello.md
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config import SiteConfig
from .crypto import SigningKey, VerifyingKey, canonicalize, sign_content
from .errors import InkSealError
from .history import HistoryStore
from .keystore import KeyStore
from .publish import Publisher
from .remote import RemoteClient, verify_remote_content
from .types import HashStatus, VerifyStatus
from .verify import verify_document, verify_history, verify_signature

EXIT_VALID = 0
EXIT_INVALID = 1
EXIT_UNVERIFIABLE = 2


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inkseal",
        description="inkseal - signed, content-addressed publishing with version history",
    )
    parser.add_argument(
        "--root",
        default=None,
        help="Site root directory (default: $INKSEAL_ROOT or .)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # keygen command
    keygen_parser = subparsers.add_parser("keygen", help="Generate the site key pair")
    keygen_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing key",
    )

    # rotate-key command
    rotate_parser = subparsers.add_parser("rotate-key", help="Replace the site key pair")
    rotate_parser.add_argument(
        "--delete-old-key",
        action="store_true",
        help="Delete the old key instead of keeping it as *.old",
    )

    # sign command
    sign_parser = subparsers.add_parser("sign", help="Sign the canonical form of a file")
    sign_parser.add_argument("file", help="File to sign")
    sign_parser.add_argument("--key", help="Private key file (default: site key)")
    sign_parser.add_argument("-o", "--output", help="Signature output path (default: stdout)")

    # verify command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Verify a published document, or a file against a detached signature",
    )
    verify_parser.add_argument("file", help="Document or file to verify")
    verify_parser.add_argument("--public-key", help="Public key file (default: site key)")
    verify_parser.add_argument("--signature", help="Detached signature file")

    # publish command
    publish_parser = subparsers.add_parser("publish", help="Publish new content")
    publish_parser.add_argument("source", help="Markdown source file")
    publish_parser.add_argument("path", help="Destination, relative to the site root")
    publish_parser.add_argument("--in-reply-to", default="", help="URL this comment replies to")
    publish_parser.add_argument("--in-reply-to-version", default="", help="Version being replied to")

    # republish command
    republish_parser = subparsers.add_parser("republish", help="Publish a new revision")
    republish_parser.add_argument("path", help="Published document, relative to the site root")
    republish_parser.add_argument("source", help="Markdown source file with the new content")

    # history command
    history_parser = subparsers.add_parser("history", help="List versions of a document")
    history_parser.add_argument("path", help="Published document, relative to the site root")

    # show command
    show_parser = subparsers.add_parser("show", help="Print a past version of a document")
    show_parser.add_argument("path", help="Published document, relative to the site root")
    show_parser.add_argument("version", help="Content hash (sha256:...)")

    # check command
    check_parser = subparsers.add_parser("check", help="Audit a document's history log")
    check_parser.add_argument("path", help="Published document, relative to the site root")

    # verify-url command
    url_parser = subparsers.add_parser("verify-url", help="Verify remote content")
    url_parser.add_argument("url", help="URL of a published document")
    url_parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    return parser


def build_config(args: argparse.Namespace) -> SiteConfig:
    overrides = {"root": args.root} if args.root else {}
    return SiteConfig.from_env(**overrides)


def _exit_code(status: VerifyStatus) -> int:
    if status == VerifyStatus.VALID:
        return EXIT_VALID
    if status == VerifyStatus.INVALID:
        return EXIT_INVALID
    return EXIT_UNVERIFIABLE


async def cmd_keygen(args: argparse.Namespace) -> int:
    """Generate the site key pair."""
    store = KeyStore(build_config(args))
    try:
        key = store.generate(overwrite=args.force)
    except FileExistsError as e:
        print(f"{e} (use --force to overwrite)", file=sys.stderr)
        return 1

    print(f"Private key: {store.private_key_path}")
    print(f"Public key:  {store.public_key_path}")
    print(f"Fingerprint: {key.public_key().fingerprint()}")
    return 0


async def cmd_rotate_key(args: argparse.Namespace) -> int:
    """Replace the site key pair."""
    result = KeyStore(build_config(args)).rotate(delete_old=args.delete_old_key)

    print("Key rotation complete!")
    if result.old_fingerprint:
        print(f"  Old key:     {result.old_fingerprint}")
    print(f"  New key:     {result.fingerprint}")
    if result.backed_up:
        print(f"  Backup:      {result.backup_path}")
    print()
    print("New public key:")
    print(f"  {result.public_key}")
    print()
    print("Next steps:")
    print("  1. Publish the new public key where readers fetch it")
    print("  2. Re-sign existing content with: inkseal republish <path> <source>")
    return 0


async def cmd_sign(args: argparse.Namespace) -> int:
    """Sign the canonical form of a file."""
    config = build_config(args)
    key = SigningKey.from_file(args.key) if args.key else KeyStore(config).load()

    content = canonicalize(Path(args.file).read_text(encoding="utf-8"))
    signature = sign_content(content, key)

    if args.output:
        Path(args.output).write_text(signature, encoding="utf-8")
        print(f"Signature written to {args.output}", file=sys.stderr)
    else:
        sys.stdout.write(signature)
    return 0


def _load_public_key(args: argparse.Namespace, config: SiteConfig) -> VerifyingKey | None:
    path = Path(args.public_key) if args.public_key else config.public_key_path
    if not path.exists():
        return None
    return VerifyingKey.from_file(path)


async def cmd_verify(args: argparse.Namespace) -> int:
    """Verify a document (or detached signature); exit 0/1/2."""
    config = build_config(args)
    path = Path(args.file)
    if not path.is_absolute() and not path.exists():
        path = config.root_path / args.file
    text = path.read_text(encoding="utf-8")

    try:
        public_key = _load_public_key(args, config)
    except ValueError as e:
        print(f"Status: UNVERIFIABLE ({e})")
        return EXIT_UNVERIFIABLE

    if args.signature:
        signature = Path(args.signature).read_text(encoding="utf-8")
        result = verify_signature(canonicalize(text), public_key, signature)
        print(f"Status: {result.status.value.upper()}")
        print(f"  {result.message}")
        return _exit_code(result.status)

    try:
        report = verify_document(text, public_key, source=str(path))
    except ValueError as e:
        print(f"Status: UNVERIFIABLE ({e})")
        return EXIT_UNVERIFIABLE

    print(f"Signature: {report.signature.status.value.upper()}")
    print(f"  {report.signature.message}")
    print(f"Hash:      {report.hash_status.value.upper()}")
    for issue in report.issues:
        print(f"  - {issue}")

    if report.signature.status == VerifyStatus.VALID and report.hash_status == HashStatus.MISMATCH:
        return EXIT_INVALID
    return _exit_code(report.signature.status)


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


async def cmd_publish(args: argparse.Namespace) -> int:
    """Publish new content."""
    config = build_config(args)
    publisher = Publisher(config, KeyStore(config).load())
    result = await publisher.publish(
        _read_source(args.source),
        args.path,
        in_reply_to=args.in_reply_to,
        in_reply_to_version=args.in_reply_to_version,
    )
    print(f"Published: {result.path}")
    print(f"  Title:   {result.title}")
    print(f"  Version: {result.version}")
    return 0


async def cmd_republish(args: argparse.Namespace) -> int:
    """Publish a new revision of existing content."""
    config = build_config(args)
    publisher = Publisher(config, KeyStore(config).load())
    result = await publisher.republish(args.path, _read_source(args.source))
    print(f"Republished: {result.path}")
    print(f"  Previous:  {result.previous_version}")
    print(f"  Version:   {result.version}")
    return 0


async def cmd_history(args: argparse.Namespace) -> int:
    """List versions of a document."""
    history = await HistoryStore(build_config(args)).load(args.path)

    print(f"History of {history.canonical_file or args.path}")
    print("-" * 50)
    for entry in history.entries:
        marker = "*" if entry.hash == history.current_hash else " "
        parent = "(base)" if entry.is_root else f"<- {entry.parent[:19]}..."
        print(f"{marker} {entry.hash}  {entry.timestamp}  {parent}")
    print()
    print(f"Versions: {len(history)}  Current: {history.current_hash}")
    return 0


async def cmd_show(args: argparse.Namespace) -> int:
    """Print a past version."""
    content = await HistoryStore(build_config(args)).reconstruct(args.path, args.version)
    sys.stdout.write(content)
    return 0


async def cmd_check(args: argparse.Namespace) -> int:
    """Audit a history log."""
    history = await HistoryStore(build_config(args)).load(args.path)
    result = verify_history(history)

    if result.valid:
        print("Status: VALID")
        print(f"  {result.message}")
    else:
        print("Status: INVALID")
        print(f"  {result.message}")
        for err in result.details.get("errors", [])[:5]:  # Show first 5 errors
            print(f"  - {err.get('hash', '-')}: {err.get('error')}")
    for dup in result.details.get("duplicates", []):
        print(f"  ! duplicate version {dup}")

    return 0 if result.valid else 1


async def cmd_verify_url(args: argparse.Namespace) -> int:
    """Verify remote content."""
    async with RemoteClient(build_config(args)) as client:
        report = await verify_remote_content(args.url, client)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(f"URL:       {report.source}")
        print(f"Type:      {report.type}")
        print(f"Title:     {report.title}")
        if report.author:
            print(f"Author:    {report.author}")
        print(f"Signature: {report.signature.status.value.upper()}")
        print(f"  {report.signature.message}")
        print(f"Hash:      {report.hash_status.value.upper()}")
        for issue in report.issues:
            print(f"  - {issue}")

    if report.signature.status == VerifyStatus.VALID and report.hash_status == HashStatus.MISMATCH:
        return EXIT_INVALID
    return _exit_code(report.signature.status)


COMMANDS = {
    "keygen": cmd_keygen,
    "rotate-key": cmd_rotate_key,
    "sign": cmd_sign,
    "verify": cmd_verify,
    "publish": cmd_publish,
    "republish": cmd_republish,
    "history": cmd_history,
    "show": cmd_show,
    "check": cmd_check,
    "verify-url": cmd_verify_url,
}


async def main_async(args: argparse.Namespace) -> int:
    """Async main entry point."""
    handler = COMMANDS.get(args.command)
    if handler is None:
        create_parser().print_help()
        return 0
    try:
        return await handler(args)
    except (InkSealError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    return asyncio.run(main_async(args))


if __name__ == "__main__":
    sys.exit(main())

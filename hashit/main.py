import argparse
import getpass
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from . import config
from .crypto_asym import Identity
from .errors import HashItError, InputError
from .protocol import download, list_documents, register, verify_by_file, verify_by_identifier

logger = logging.getLogger(__name__)


def configure_logging(log_dir: Path, verbose: bool = False):
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(str(log_dir / 'hashit.log'), maxBytes=5_000_000, backupCount=5)
    handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
    console = logging.StreamHandler()
    console.setLevel(logging.INFO if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter('%(levelname)s %(message)s'))
    logging.basicConfig(level=logging.INFO, handlers=[handler, console], force=True)


def _read_file(path: str) -> bytes:
    p = Path(path)
    if not p.is_file():
        raise InputError(f'file not found: {p}')
    return p.read_bytes()


def _secret(args, prompt='Secret key: ') -> str:
    return args.secret or getpass.getpass(prompt)


def _print_step(step, message):
    print(f'  - {step.value} {message}'.rstrip())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='hashit', description='Register and prove ownership of documents')
    parser.add_argument('-v', '--verbose', action='store_true')
    parser.add_argument('--config', help='Path to config.json')
    sub = parser.add_subparsers(dest='cmd')
    sub.add_parser('keygen', help='Create the local signing identity if missing')
    sub.add_parser('whoami', help='Show the local signing identity')
    cidp = sub.add_parser('cid', help='Compute a content identifier without storing')
    cidp.add_argument('file')
    regp = sub.add_parser('register')
    regp.add_argument('file')
    regp.add_argument('--secret')
    regp.add_argument('--encrypt', action='store_true')
    regp.add_argument('--password')
    verp = sub.add_parser('verify', help='Verify ownership with the original file')
    verp.add_argument('file')
    verp.add_argument('--secret')
    vcp = sub.add_parser('verify-cid', help='Verify an unbound secret against a content identifier')
    vcp.add_argument('cid')
    vcp.add_argument('--secret')
    dlp = sub.add_parser('download')
    target = dlp.add_mutually_exclusive_group(required=True)
    target.add_argument('--cid')
    target.add_argument('--id', type=int)
    dlp.add_argument('--password')
    dlp.add_argument('--out')
    lsp = sub.add_parser('list')
    lsp.add_argument('--address')
    webp = sub.add_parser('serve')
    webp.add_argument('--host', default='127.0.0.1')
    webp.add_argument('--port', type=int, default=4000)
    pinp = sub.add_parser('pin-worker')
    pinp.add_argument('--interval', type=int, default=3600)
    pinp.add_argument('--once', action='store_true')
    setp = sub.add_parser('config-set')
    setp.add_argument('key')
    setp.add_argument('value')
    return parser


def run(args, settings: config.Settings) -> int:
    if args.cmd == 'config-set':
        config.set_value(args.key, args.value, args.config)
        print(f'{args.key} set to {args.value}')
        return 0
    if args.cmd == 'keygen':
        ident = Identity.load_or_create(Path(settings.key_dir))
        print('address', ident.address)
        return 0
    if args.cmd == 'whoami':
        ident = Identity.load(Path(settings.key_dir))
        print('address', ident.address)
        print('public key', ident.public_key_hex)
        return 0
    if args.cmd == 'serve':
        from .ui import init_app
        init_app(settings).run(host=args.host, port=args.port)
        return 0

    identity = None
    if args.cmd in ('register', 'list', 'pin-worker'):
        identity = Identity.load_or_create(Path(settings.key_dir))
    ctx = config.build_context(settings, identity=identity, on_step=_print_step if args.verbose else None)

    if args.cmd == 'cid':
        print(ctx.storage.identifier_only(_read_file(args.file)))
        return 0
    if args.cmd == 'register':
        data = _read_file(args.file)
        password = None
        if args.encrypt:
            password = args.password or getpass.getpass('Encryption password: ')
        res = register(ctx, data, _secret(args), password=password, encrypt=args.encrypt)
        print('Document registered.')
        print('  id        ', res.document_id)
        print('  digest    ', res.original_digest.hex())
        print('  cid       ', res.identifier)
        print('  commitment', res.commitment)
        print('  encrypted ', 'yes' if res.encrypted else 'no')
        return 0
    if args.cmd == 'verify':
        res = verify_by_file(ctx, Path(args.file), _secret(args))
        print(f'Verification successful. You have proven ownership of the document uploaded by {res.uploader}.')
        return 0
    if args.cmd == 'verify-cid':
        res = verify_by_identifier(ctx, args.cid, _secret(args))
        print(f'Verification successful for {args.cid} (uploaded by {res.uploader}).')
        return 0
    if args.cmd == 'download':
        res = download(ctx, identifier=args.cid, document_id=args.id, password=args.password)
        out = Path(args.out or f'decrypted-doc-{res.record.document_id}')
        out.write_bytes(res.data)
        print(f'Saved {len(res.data)} bytes to {out}')
        return 0
    if args.cmd == 'list':
        records, failures = list_documents(ctx, args.address)
        for r in records:
            print(f"{r.document_id}\t{'encrypted' if r.encrypted else 'plain'}\t{r.identifier}")
        for doc_id, err in failures.items():
            print(f'{doc_id}\terror\t{err}', file=sys.stderr)
        if not records and not failures:
            print('No documents found for this address.')
        return 0
    if args.cmd == 'pin-worker':
        from .workers.pin_keeper import run_loop, run_once
        if args.once:
            res = run_once(ctx)
            print(f"pinned {len(res['pinned'])}, failed {len(res['failed'])}")
            return 0
        try:
            run_loop(ctx, interval_seconds=args.interval)
        except (KeyboardInterrupt, SystemExit):
            print('Pin worker shutting down')
        return 0
    return 2


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 2
    try:
        settings = config.load_settings(args.config)
        configure_logging(Path(settings.data_dir) / 'logs', args.verbose)
        return run(args, settings)
    except HashItError as e:
        print(f'error: {e}', file=sys.stderr)
        return 1
    except FileNotFoundError as e:
        print(f'error: {e}', file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())

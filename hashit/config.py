"""Settings: JSON config file overridden by HASHIT_* environment variables.

``build_context`` turns settings into the explicit FlowContext every flow
takes; nothing here keeps process-wide registry or storage handles.
"""
import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from .crypto_asym import Identity
from .errors import InputError
from .ipfs_interface import IPFS_API, ContentAddresser, IPFSAddresser, LocalAddresser
from .protocol import BindingMode, FlowContext
from .registry import HTTPRegistry, Registry, SQLiteRegistry
from .zk_proofs import HashProver, Prover, SnarkjsProver

DEFAULT_HOME = Path.home() / '.hashit'
CFG_PATH = Path(os.environ.get('HASHIT_CONFIG', DEFAULT_HOME / 'config.json'))


@dataclass
class Settings:
    data_dir: str = str(DEFAULT_HOME)
    db_path: str = ''
    key_dir: str = ''
    storage: str = 'ipfs'
    ipfs_api: str = IPFS_API
    registry_url: str = ''
    prover: str = 'snarkjs'
    snarkjs_bin: str = 'snarkjs'
    circuit_wasm: str = 'circuits/myposeidon.wasm'
    circuit_zkey: str = 'circuits/circuit_final.zkey'
    binding_mode: str = 'bound'
    timeout: float = 30
    retries: int = 3
    prove_timeout: float = 120

    def __post_init__(self):
        if not self.db_path:
            self.db_path = str(Path(self.data_dir) / 'registry.db')
        if not self.key_dir:
            self.key_dir = str(Path(self.data_dir) / 'keys')


def read_config(path: Optional[Path] = None) -> dict:
    p = Path(path or CFG_PATH)
    if not p.exists():
        return {}
    try:
        return json.loads(p.read_text(encoding='utf-8'))
    except ValueError as e:
        raise InputError(f'config file {p} is not valid JSON: {e}') from e


def write_config(d: dict, path: Optional[Path] = None):
    p = Path(path or CFG_PATH)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(d, indent=2), encoding='utf-8')


def set_value(key: str, value: str, path: Optional[Path] = None):
    names = {f.name for f in fields(Settings)}
    if key not in names:
        raise InputError(f'unknown setting {key!r}; expected one of {sorted(names)}')
    cfg = read_config(path)
    cfg[key] = value
    write_config(cfg, path)


def load_settings(path: Optional[Path] = None, env: Optional[dict] = None) -> Settings:
    env = os.environ if env is None else env
    cfg = read_config(path)
    values = {}
    for f in fields(Settings):
        raw = env.get('HASHIT_' + f.name.upper(), cfg.get(f.name))
        if raw is None:
            continue
        try:
            if f.type in (float, 'float'):
                raw = float(raw)
            elif f.type in (int, 'int'):
                raw = int(raw)
            else:
                raw = str(raw)
        except ValueError as e:
            raise InputError(f'setting {f.name} has an invalid value {raw!r}') from e
        values[f.name] = raw
    return Settings(**values)


def build_registry(settings: Settings) -> Registry:
    if settings.registry_url:
        return HTTPRegistry(settings.registry_url, timeout=settings.timeout, retries=settings.retries)
    return SQLiteRegistry(settings.db_path)


def build_storage(settings: Settings) -> ContentAddresser:
    if settings.storage == 'ipfs':
        return IPFSAddresser(settings.ipfs_api, timeout=settings.timeout, retries=settings.retries)
    if settings.storage == 'local':
        return LocalAddresser(str(Path(settings.data_dir) / 'store'))
    raise InputError(f'unknown storage backend {settings.storage!r}')


def build_prover(settings: Settings) -> Prover:
    if settings.prover == 'snarkjs':
        return SnarkjsProver(settings.circuit_wasm, settings.circuit_zkey, snarkjs_bin=settings.snarkjs_bin,
                             timeout=settings.prove_timeout)
    if settings.prover == 'hash':
        return HashProver()
    raise InputError(f'unknown prover {settings.prover!r}')


def parse_binding_mode(value: str) -> BindingMode:
    try:
        return BindingMode(value)
    except ValueError as e:
        raise InputError(f'binding_mode must be "bound" or "unbound", got {value!r}') from e


def build_context(settings: Settings, identity: Optional[Identity] = None, **kwargs) -> FlowContext:
    mode = parse_binding_mode(settings.binding_mode)
    return FlowContext(registry=build_registry(settings), storage=build_storage(settings),
                       prover=build_prover(settings), identity=identity, binding_mode=mode, **kwargs)

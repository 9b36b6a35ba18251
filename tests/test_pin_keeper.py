import sys, os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from hashit import protocol
from hashit.crypto_asym import Identity
from hashit.errors import NetworkUnavailableError
from hashit.ipfs_interface import LocalAddresser
from hashit.protocol import FlowContext
from hashit.registry import SQLiteRegistry
from hashit.workers import pin_keeper
from hashit.zk_proofs import HashProver


def test_run_once_pins_every_document(tmp_path):
    ctx = FlowContext(registry=SQLiteRegistry(str(tmp_path / 'r.db')), storage=LocalAddresser(str(tmp_path / 's')),
                      prover=HashProver(), identity=Identity.generate())
    cids = [protocol.register(ctx, f'doc {i}'.encode(), 's').identifier for i in range(2)]
    res = pin_keeper.run_once(ctx)
    assert sorted(res['pinned']) == sorted(cids)
    assert res['failed'] == []


def test_run_once_reports_failures(tmp_path):
    class FlakyStorage(LocalAddresser):
        def pin(self, cid):
            raise NetworkUnavailableError('daemon down')

    ctx = FlowContext(registry=SQLiteRegistry(str(tmp_path / 'r.db')), storage=FlakyStorage(str(tmp_path / 's')),
                      prover=HashProver(), identity=Identity.generate())
    cid = protocol.register(ctx, b'doc', 's').identifier
    res = pin_keeper.run_once(ctx, ctx.identity.address)
    assert res == {'pinned': [], 'failed': [cid]}

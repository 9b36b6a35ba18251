"""Pin maintenance worker.

Walks the documents registered by an address and re-pins each stored
identifier on the storage node so payloads stay retrievable after garbage
collection. Failures are logged per document and retried on the next run.
"""
import logging

from apscheduler.schedulers.blocking import BlockingScheduler

from ..errors import HashItError
from ..protocol import FlowContext, list_documents

logger = logging.getLogger(__name__)


def run_once(ctx: FlowContext, address: str = None) -> dict:
    """Returns {'pinned': [...], 'failed': [...]} lists of identifiers/ids."""
    records, failures = list_documents(ctx, address)
    pinned, failed = [], [str(doc_id) for doc_id in failures]
    for rec in records:
        try:
            ok = ctx.storage.pin(rec.identifier)
        except HashItError as e:
            logger.warning('Pin failed for document id=%s cid=%s: %s', rec.document_id, rec.identifier, e)
            failed.append(rec.identifier)
            continue
        if ok:
            pinned.append(rec.identifier)
        else:
            logger.warning('Storage node refused to pin %s', rec.identifier)
            failed.append(rec.identifier)
    logger.info('Pin run complete: %d pinned, %d failed', len(pinned), len(failed))
    return {'pinned': pinned, 'failed': failed}


def run_loop(ctx: FlowContext, address: str = None, interval_seconds: int = 3600):
    sched = BlockingScheduler()

    def job():
        try:
            run_once(ctx, address)
        except HashItError as e:
            logger.error('Pin run aborted: %s', e)

    sched.add_job(job, 'interval', seconds=interval_seconds)
    job()
    sched.start()

"""
dispatcher.py
Transfer dispatcher:
  - run_sync: blocking copy for must-complete steps
  - run_sync_async: submit a copy to a bounded pool; its exit code lands on the job
  - join: wait for the whole batch, then record per-job results
dispatch_batches() drives a job list in batches no larger than the ceiling. Each
batch is watched, fully joined, then evaluated; a failed job aborts the run only
after its siblings have finished.
"""

from __future__ import annotations
import concurrent.futures, logging
from typing import Callable, Iterable, List, Optional
from .types import Config, JobBatch, JobState, TransferJob
from .syncer import rsync_cmd
from .util import run
from .errors import TransferError

log = logging.getLogger(__name__)


class TransferDispatcher:
    def __init__(self, cfg: Config, runner=run):
        self.cfg = cfg
        self._run = runner
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=cfg.concurrency, thread_name_prefix="sync"
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _execute(self, job: TransferJob) -> TransferJob:
        cmd = rsync_cmd(self.cfg, job)
        rc, out = self._run(cmd, capture=True, dry=job.dry_run)
        job.returncode = rc
        job.result = JobState.SUCCESS if rc == 0 else JobState.FAILED
        if rc != 0:
            log.error("sync %s failed (rc=%d): %s", job.label or job.source, rc, out.strip()[-2000:])
        else:
            log.debug("sync %s done", job.label or job.source)
        return job

    def run_sync(self, job: TransferJob) -> bool:
        log.info("sync %s -> %s", job.source, job.destination)
        return self._execute(job).ok

    def run_sync_async(self, job: TransferJob, batch: JobBatch) -> concurrent.futures.Future:
        log.info("sync %s -> %s (background)", job.source, job.destination)
        if job.dry_run:
            fut: concurrent.futures.Future = concurrent.futures.Future()
            fut.set_result(self._execute(job))
        else:
            fut = self._executor.submit(self._execute, job)
        batch.jobs.append(job)
        batch.futures.append(fut)
        return fut

    def join(self, batch: JobBatch) -> List[TransferJob]:
        concurrent.futures.wait(batch.futures)
        for job, fut in zip(batch.jobs, batch.futures):
            exc = fut.exception()
            if exc is not None:
                job.result = JobState.FAILED
                log.error("sync %s raised: %s", job.label or job.source, exc)
        return batch.jobs


def _finish_batch(
    dispatcher: TransferDispatcher,
    batch: JobBatch,
    watch: Optional[Callable[[JobBatch], object]],
) -> List[TransferJob]:
    if watch is not None:
        watch(batch)
    dispatcher.join(batch)
    failed = batch.failed()
    if failed:
        raise TransferError(
            f"{len(failed)} of {len(batch)} sync job(s) failed: "
            + ", ".join(j.label or j.source for j in failed)
        )
    return batch.jobs


def dispatch_batches(
    dispatcher: TransferDispatcher,
    jobs: Iterable[TransferJob],
    ceiling: int,
    watch: Optional[Callable[[JobBatch], object]] = None,
) -> List[TransferJob]:
    done: List[TransferJob] = []
    batch = JobBatch()
    for job in jobs:
        dispatcher.run_sync_async(job, batch)
        if len(batch) >= ceiling:
            done += _finish_batch(dispatcher, batch, watch)
            batch = JobBatch()
    if len(batch):
        done += _finish_batch(dispatcher, batch, watch)
    return done

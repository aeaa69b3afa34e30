"""
Fleet Scheduler
===============

Drives every identity through its lifecycle:

  1. Reward-claim pass for identities that already hold a token (waited on)
  2. Recurring jobs registered on a private `schedule.Scheduler`:
       reward-claim every 12h, medal-claim every 12h, account-details every 5m
  3. Provisioning pass, one pipeline thread per identity, in the background:
       token → account id → start supervisor → medals/reward/details → resources

The recurring jobs are live before the provisioning pass starts, so an
identity stuck retrying its token never holds up the others' jobs; a tick
simply skips identities that have no token yet.

A tick only submits work to the pool and returns. The pool has a slot for
every (job, identity) pair and a pair whose previous task is still running
is skipped, so a slow identity never delays the next tick or anyone else.
shutdown() cancels every retry wait, drops the jobs, and stops all
supervisors.
"""

from __future__ import annotations
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import schedule

from .config import AgentConfig
from .identity import IdentityContext
from .provisioner import CredentialProvisioner
from .resources import ResourceAssigner
from .rewards import RewardClient
from .store import AccountDirectory, RecordStore
from .supervisor import ConnectionSupervisor, Session

log = logging.getLogger(__name__)

SupervisorFactory = Callable[[Session, IdentityContext], ConnectionSupervisor]

# Callable signature shared by the recurring per-identity operations
Operation = Callable[[str, IdentityContext], object]

RECURRING_JOBS = ("reward-claim", "medal-claim", "account-details")


def _join_all(threads: list[threading.Thread], poll: float = 0.5):
    # Short joins keep the main thread responsive to SIGINT
    for t in threads:
        while t.is_alive():
            t.join(poll)


class FleetScheduler:
    def __init__(
        self,
        config:      AgentConfig,
        contexts:    list[IdentityContext],
        store:       RecordStore,
        accounts:    AccountDirectory,
        provisioner: CredentialProvisioner,
        rewards:     RewardClient,
        resources:   ResourceAssigner,
        stop:        threading.Event,
        supervisor_factory: Optional[SupervisorFactory] = None,
    ):
        self.config      = config
        self.contexts    = contexts
        self.store       = store
        self.accounts    = accounts
        self.provisioner = provisioner
        self.rewards     = rewards
        self.resources   = resources
        self.stop        = stop
        self.supervisor_factory = supervisor_factory or self._default_supervisor

        self.jobs        = schedule.Scheduler()
        self.supervisors: dict[str, ConnectionSupervisor] = {}
        self._pool       = ThreadPoolExecutor(
            max_workers        = max(config.max_workers, len(contexts) * len(RECURRING_JOBS)),
            thread_name_prefix = "fleet-job",
        )
        self._lock       = threading.Lock()
        self._in_flight: set[tuple[str, str]] = set()   # (job name, address)
        self._provisioning: Optional[threading.Thread] = None

    def _default_supervisor(self, session: Session, ctx: IdentityContext) -> ConnectionSupervisor:
        return ConnectionSupervisor(
            config    = self.config,
            session   = session,
            ctx       = ctx,
            resources = self.resources,
            accounts  = self.accounts,
        )

    # ─── Startup ──────────────────────────────────────────────────────────────

    def start(self) -> Optional[threading.Thread]:
        """
        Initial reward pass, register recurring jobs, then launch the
        provisioning pass in the background. Returns the provisioning thread;
        run_forever() keeps the recurring jobs ticking while it works.
        """
        self.initial_reward_pass()
        if self.stop.is_set():
            return None
        self.schedule_recurring()
        self._provisioning = self._spawn("provisioning", self.provision_all)
        return self._provisioning

    def wait_provisioned(self, timeout: Optional[float] = None) -> bool:
        """True once the provisioning pass has finished."""
        if self._provisioning is None:
            return False
        self._provisioning.join(timeout)
        return not self._provisioning.is_alive()

    def initial_reward_pass(self):
        threads = []
        for ctx in self.contexts:
            token = self.store.token_for(ctx.address)
            if not token:
                continue
            threads.append(self._spawn(
                f"reward-{ctx.index + 1}",
                self._guarded, "reward-claim", self.rewards.check_and_claim_reward, token, ctx,
            ))
        _join_all(threads)

    def provision_all(self):
        log.info(f"Provisioning {len(self.contexts)} identit(ies)")
        threads = [
            self._spawn(f"pipeline-{ctx.index + 1}", self._guarded_pipeline, ctx)
            for ctx in self.contexts
        ]
        _join_all(threads)
        log.info(f"Provisioning pass complete — {len(self.supervisors)} supervisor(s) running")

    def run_pipeline(self, ctx: IdentityContext):
        """One identity, start to finish. Never touches another identity's state."""
        record = self.provisioner.provision(ctx)
        if record is None or not record.token:
            log.info(f"{ctx.tag()} Skipping wallet {ctx.address} due to missing token")
            return

        if self.rewards.fetch_account_id(record.token, ctx) is None:
            log.info(f"{ctx.tag()} Wallet {ctx.address} has no valid accountID, skipping further steps")
            return

        self.start_supervisor(Session.from_record(record), ctx)

        token = record.token
        workers = [
            self._spawn(f"medals-{ctx.index + 1}",  self._guarded, "medal-claim",     self.rewards.claim_medals,           token, ctx),
            self._spawn(f"reward-{ctx.index + 1}",  self._guarded, "reward-claim",    self.rewards.check_and_claim_reward, token, ctx),
            self._spawn(f"details-{ctx.index + 1}", self._guarded, "account-details", self.rewards.fetch_account_details,  token, ctx),
        ]
        _join_all(workers)

        self.resources.ensure_resources(ctx.address)

    def start_supervisor(self, session: Session, ctx: IdentityContext) -> Optional[ConnectionSupervisor]:
        with self._lock:
            if self.stop.is_set() or session.address in self.supervisors:
                return self.supervisors.get(session.address)
            supervisor = self.supervisor_factory(session, ctx)
            self.supervisors[session.address] = supervisor
        supervisor.start()
        return supervisor

    # ─── Recurring jobs ───────────────────────────────────────────────────────

    def schedule_recurring(self):
        self.jobs.every(self.config.reward_claim_hours).hours.do(
            self.tick, "reward-claim", self.rewards.check_and_claim_reward,
        ).tag("reward-claim")
        self.jobs.every(self.config.medal_claim_hours).hours.do(
            self.tick, "medal-claim", self.rewards.claim_medals,
        ).tag("medal-claim")
        self.jobs.every(self.config.details_refresh_minutes).minutes.do(
            self.tick, "account-details", self.rewards.fetch_account_details,
        ).tag("account-details")
        log.info(
            f"Recurring jobs: reward-claim every {self.config.reward_claim_hours:g}h, "
            f"medal-claim every {self.config.medal_claim_hours:g}h, "
            f"account-details every {self.config.details_refresh_minutes:g}m"
        )

    def tick(self, name: str, operation: Operation) -> int:
        """
        Submit one task per identity with a token. Does not wait for them.
        An identity whose task from an earlier tick of the same job is still
        running is skipped this time round.
        """
        submitted = 0
        for ctx in self.contexts:
            if self.stop.is_set():
                break
            token = self.store.token_for(ctx.address)
            if not token:
                continue
            key = (name, ctx.address)
            with self._lock:
                if key in self._in_flight:
                    log.debug(f"{ctx.tag(self.accounts)} [{name}] previous run still in progress — skipping")
                    continue
                self._in_flight.add(key)
            self._pool.submit(self._run_tracked, key, name, operation, token, ctx)
            submitted += 1
        log.debug(f"[{name}] tick submitted {submitted} task(s)")
        return submitted

    def _run_tracked(self, key: tuple[str, str], name: str, operation: Operation, token: str, ctx: IdentityContext):
        try:
            return self._guarded(name, operation, token, ctx)
        finally:
            with self._lock:
                self._in_flight.discard(key)

    def run_forever(self, poll: float = 1.0):
        while not self.stop.wait(poll):
            self.jobs.run_pending()

    # ─── Shutdown ─────────────────────────────────────────────────────────────

    def shutdown(self):
        log.info("Shutting down — cancelling retries and closing connections…")
        self.stop.set()
        self.jobs.clear()
        with self._lock:
            supervisors = list(self.supervisors.values())
        for supervisor in supervisors:
            supervisor.stop()
        for supervisor in supervisors:
            supervisor.join(timeout=5)
        if self._provisioning is not None:
            self._provisioning.join(timeout=5)
        self._pool.shutdown(wait=False, cancel_futures=True)
        log.info("Fleet stopped.")

    # ─── Helpers ──────────────────────────────────────────────────────────────

    def _spawn(self, name: str, target, *args) -> threading.Thread:
        t = threading.Thread(target=target, args=args, name=name, daemon=True)
        t.start()
        return t

    def _guarded(self, name: str, operation: Operation, token: str, ctx: IdentityContext):
        try:
            return operation(token, ctx)
        except Exception as e:
            log.exception(f"{ctx.tag(self.accounts)} [{name}] unexpected error: {e}")

    def _guarded_pipeline(self, ctx: IdentityContext):
        try:
            self.run_pipeline(ctx)
        except Exception as e:
            log.exception(f"{ctx.tag(self.accounts)} pipeline error: {e}")

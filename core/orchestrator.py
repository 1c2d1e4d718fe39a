"""Asyncio driver for one user's drill session.

The orchestrator owns the mutable edges of a session: the current
SessionSnapshot, the in-flight drill request, the fuse loop, the teardown
timer and the persistence queue. All state changes go through the pure
reducers in core.session; blocking collaborator calls run in the default
executor.
"""

import asyncio
import logging
import random

from . import session
from .config import DEFAULT_MODE, MODES, FUSE_TICK_MS, TEARDOWN_DELAY_SECONDS
from .encounters import WagerEncounter
from .errors import DrillCancelled, GenerationError, SessionError, RouletteError
from .interfaces import AIProvider, Storage
from .models import Drill, ProfileBook, Score, validate_tier
from .rating import rank_for, tier_for_rating
from .roulette import RouletteSession

logger = logging.getLogger(__name__)


class CancellationToken:
    """Marks a drill request as superseded."""

    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise DrillCancelled("drill request was superseded")


class SessionOrchestrator:
    def __init__(self, provider: AIProvider, storage: Storage, user_id: str = "default",
                 mode: str = DEFAULT_MODE, tier: int | None = None, rng=None,
                 teardown_delay: float = TEARDOWN_DELAY_SECONDS,
                 tick_interval: float | None = FUSE_TICK_MS / 1000):
        """tick_interval=None disables the background fuse loop; call tick() instead."""
        if mode not in MODES:
            raise ValueError(f"unknown mode: {mode}")
        self.provider = provider
        self.storage = storage
        self.user_id = user_id
        self.mode = mode
        self.requested_tier = validate_tier(tier) if tier is not None else None
        self.rng = rng or random.Random()
        self.teardown_delay = teardown_delay
        self.tick_interval = tick_interval

        self.book: ProfileBook | None = None
        self.snapshot: session.SessionSnapshot | None = None
        self.roulette: RouletteSession | None = None
        self.closed = False

        self._token: CancellationToken | None = None
        self._teardown_handle: asyncio.TimerHandle | None = None
        self._fuse_task: asyncio.Task | None = None
        self._writer_task: asyncio.Task | None = None
        self._persist_queue: asyncio.Queue | None = None

    async def start(self) -> session.SessionSnapshot:
        """Load the user's profiles and start the background tasks."""
        loop = asyncio.get_running_loop()
        state = await loop.run_in_executor(None, self.storage.load_state, self.user_id)
        self.book = ProfileBook.from_dict(state)
        profile = self.book.get(self.mode)
        tier = self.requested_tier or tier_for_rating(profile.rating)
        self.snapshot = session.SessionSnapshot(mode=self.mode, tier=tier, profile=profile)

        self._persist_queue = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._drain_persistence())
        if self.tick_interval is not None:
            self._fuse_task = asyncio.create_task(self._run_fuse())
        logger.info(f"Session started for {self.user_id}: {self.mode} tier {tier}, "
                    f"rating {profile.rating}")
        return self.snapshot

    def _ensure_open(self) -> None:
        if self.closed:
            raise SessionError("session is closed")
        if self.snapshot is None:
            raise SessionError("session has not been started")

    # Drills

    async def next_drill(self, forced_kind: str | None = None) -> Drill | None:
        """Request a new drill, superseding any request still in flight.

        Returns None when this request was itself superseded or the session
        closed while it was running.
        """
        self._ensure_open()
        if self.snapshot.encounter.ending:
            self._finish_teardown()

        candidate, used_pending = session.select_next_encounter(self.snapshot, self.rng, forced_kind)
        if self._token:
            self._token.cancel()
        token = CancellationToken()
        self._token = token
        kind = getattr(candidate, 'kind', None)
        mode, tier, rating = self.snapshot.mode, self.snapshot.tier, self.snapshot.profile.rating

        loop = asyncio.get_running_loop()
        try:
            data, ms = await loop.run_in_executor(
                None, lambda: self.provider.generate_drill(mode, tier, rating, kind)
            )
            token.raise_if_cancelled()
            drill = Drill.from_response(data, mode, tier, kind)
            token.raise_if_cancelled()
        except DrillCancelled:
            logger.info(f"Discarding superseded drill for {self.user_id}")
            return None
        except GenerationError:
            if token.cancelled:
                logger.info(f"Discarding failed superseded drill for {self.user_id}")
                return None
            raise
        finally:
            if self._token is token:
                self._token = None

        self.snapshot = session.begin_drill(self.snapshot, drill, candidate, clear_pending=used_pending)
        logger.info(f"Drill ready for {self.user_id} in {ms}ms: tier {tier}, "
                    f"boss {kind or 'none'}")
        return drill

    async def submit(self, answer: str) -> session.AttemptOutcome | None:
        """Score an answer against the current drill and fold it in.

        Returns None when the encounter is in its terminal window or the
        drill changed while scoring was in flight.
        """
        self._ensure_open()
        if self.snapshot.drill is None:
            raise SessionError("no drill to answer")
        if self.snapshot.encounter.ending:
            logger.info(f"Ignoring submission for {self.user_id}: encounter is ending")
            return None
        encounter = self.snapshot.encounter
        if isinstance(encounter, WagerEncounter) and encounter.awaiting_double_down:
            self.snapshot = session.resolve_double_down(self.snapshot, False)

        self.snapshot = session.begin_submission(self.snapshot)
        drill = self.snapshot.drill
        rating = self.snapshot.profile.rating
        is_reversed = getattr(self.snapshot.encounter, 'kind', None) == 'reverser'

        loop = asyncio.get_running_loop()
        try:
            data, ms = await loop.run_in_executor(
                None,
                lambda: self.provider.score_answer(answer, drill.reference_answer, drill.source_text,
                                                   rating, drill.mode, is_reversed)
            )
            score = Score.from_response(data)
        except (Exception, asyncio.CancelledError):
            # Any failure leaves the drill answerable and the fuse ticking
            self.snapshot = session.abort_submission(self.snapshot)
            raise

        if self.closed:
            return None
        if self.snapshot.drill is not drill:
            logger.info(f"Discarding score for replaced drill {drill.drill_id}")
            return None

        self.snapshot, outcome = session.apply_score(self.snapshot, score, self.rng)
        logger.info(f"Scored {self.user_id} in {ms}ms: {score.score} -> {outcome.delta:+d} "
                    f"(rating {self.snapshot.profile.rating})")
        self._after_outcome(outcome)
        return outcome

    # Encounter decisions

    def acknowledge_intro(self) -> session.SessionSnapshot:
        self._ensure_open()
        self.snapshot = session.acknowledge_intro(self.snapshot)
        return self.snapshot

    def choose_wager_tier(self, tier: str) -> session.SessionSnapshot:
        self._ensure_open()
        self.snapshot = session.choose_wager_tier(self.snapshot, tier)
        return self.snapshot

    def double_down(self, accept: bool) -> session.SessionSnapshot:
        self._ensure_open()
        self.snapshot = session.resolve_double_down(self.snapshot, accept)
        return self.snapshot

    # Roulette

    def open_roulette(self) -> RouletteSession:
        self._ensure_open()
        if self.snapshot.encounter.active:
            raise SessionError("cannot open the roulette while an encounter is live")
        self.roulette = RouletteSession(self.rng)
        return self.roulette

    def finish_roulette(self, roulette: RouletteSession | None = None):
        """Settle a fired roulette. The next drill is forced into its boss."""
        self._ensure_open()
        roulette = roulette or self.roulette
        if roulette is None:
            raise RouletteError("no roulette in progress")
        result = roulette.take_result()
        if result is None:
            raise RouletteError("roulette has not been fired or was already settled")
        self.snapshot = session.apply_roulette_result(self.snapshot, result)
        if roulette is self.roulette:
            self.roulette = None
        if result.survive_bonus:
            self._persist()
        return result

    # Fuse and teardown

    def tick(self, elapsed_ms: float = FUSE_TICK_MS) -> session.AttemptOutcome | None:
        """Advance the fuse once. Returns the timeout outcome on expiry."""
        if self.closed or self.snapshot is None:
            return None
        self.snapshot, outcome = session.apply_tick(self.snapshot, elapsed_ms)
        if outcome:
            logger.info(f"Fuse expired for {self.user_id}: {outcome.delta:+d}")
            self._after_outcome(outcome)
        return outcome

    async def _run_fuse(self) -> None:
        while not self.closed:
            await asyncio.sleep(self.tick_interval)
            self.tick(FUSE_TICK_MS)

    def _schedule_teardown(self) -> None:
        if self._teardown_handle:
            self._teardown_handle.cancel()
        loop = asyncio.get_running_loop()
        self._teardown_handle = loop.call_later(self.teardown_delay, self._finish_teardown)

    def _finish_teardown(self) -> None:
        if self._teardown_handle:
            self._teardown_handle.cancel()
            self._teardown_handle = None
        if self.closed:
            return
        if self.snapshot.encounter.ending:
            self.snapshot = session.clear_encounter(self.snapshot)

    def _after_outcome(self, outcome: session.AttemptOutcome) -> None:
        if outcome.persist:
            self._persist()
        if outcome.teardown:
            self._schedule_teardown()

    # Persistence

    def _persist(self) -> None:
        self.book.put(self.mode, self.snapshot.profile)
        self._persist_queue.put_nowait(self.book.to_dict())

    async def _drain_persistence(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            state = await self._persist_queue.get()
            try:
                await loop.run_in_executor(None, self.storage.save_state, state, self.user_id)
            except Exception as e:
                logger.error(f"Failed to save profile for {self.user_id}: {e}")
            finally:
                self._persist_queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued profile write has been attempted."""
        if self._persist_queue is not None:
            await self._persist_queue.join()

    # Views

    def rank(self) -> dict:
        self._ensure_open()
        return rank_for(self.snapshot.profile.rating)

    def to_dict(self) -> dict:
        data = self.snapshot.to_dict() if self.snapshot else {}
        data['user_id'] = self.user_id
        data['closed'] = self.closed
        data['roulette'] = self.roulette.to_dict() if self.roulette else None
        return data

    async def close(self) -> None:
        """Stop the fuse, drop pending work and flush queued writes."""
        if self.closed:
            return
        self.closed = True
        if self._token:
            self._token.cancel()
        if self._teardown_handle:
            self._teardown_handle.cancel()
            self._teardown_handle = None
        if self._fuse_task:
            self._fuse_task.cancel()
            try:
                await self._fuse_task
            except asyncio.CancelledError:
                pass
        if self._writer_task:
            await self.flush()
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
        logger.info(f"Session closed for {self.user_id}")

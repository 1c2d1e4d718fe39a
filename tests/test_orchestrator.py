"""Tests for the asyncio session orchestrator."""

import asyncio
import unittest

from core.encounters import NO_ENCOUNTER, BossEncounter, WagerEncounter
from core.errors import DrillCancelled, GenerationError, RouletteError, SessionError
from core.orchestrator import CancellationToken, SessionOrchestrator
from core.rating import rate_attempt

from mocks import BlockingAIProvider, MockAIProvider, MockStorage, ScriptedRandom


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.provider = MockAIProvider()
        self.storage = MockStorage()

    async def make(self, mode='translation', rng=None, **kwargs):
        kwargs.setdefault('tick_interval', None)
        orchestrator = SessionOrchestrator(self.provider, self.storage, mode=mode,
                                           rng=rng or ScriptedRandom(), **kwargs)
        await orchestrator.start()
        self.addAsyncCleanup(orchestrator.close)
        return orchestrator

    async def wait_for(self, predicate, timeout=3.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                self.fail("condition not reached in time")
            await asyncio.sleep(0.01)


class TestCancellationToken(unittest.TestCase):

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        with self.assertRaises(DrillCancelled):
            token.raise_if_cancelled()


class TestStart(OrchestratorTestCase):

    async def test_default_profile_and_tier(self):
        orchestrator = await self.make()
        self.assertEqual(orchestrator.snapshot.profile.rating, 1200)
        self.assertEqual(orchestrator.snapshot.tier, 3)
        self.assertIs(orchestrator.snapshot.encounter, NO_ENCOUNTER)

    async def test_legacy_profile_is_migrated(self):
        self.storage.set_state({'elo_rating': 1850, 'streak_count': 1, 'max_elo': 1900})
        orchestrator = await self.make()
        self.assertEqual(orchestrator.snapshot.profile.rating, 1850)
        self.assertEqual(orchestrator.snapshot.tier, 5)

    async def test_explicit_tier(self):
        orchestrator = await self.make(tier=7)
        self.assertEqual(orchestrator.snapshot.tier, 7)

    async def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            SessionOrchestrator(self.provider, self.storage, mode='speaking')
        with self.assertRaises(ValueError):
            SessionOrchestrator(self.provider, self.storage, tier=12)

    async def test_calls_before_start(self):
        orchestrator = SessionOrchestrator(self.provider, self.storage, tick_interval=None)
        with self.assertRaises(SessionError):
            await orchestrator.next_drill()


class TestDrillAndSubmit(OrchestratorTestCase):

    async def test_submit_rates_and_persists(self):
        orchestrator = await self.make()
        drill = await orchestrator.next_drill()
        self.assertEqual(drill.reference_answer, 'The weather is nice today')
        self.assertEqual(self.provider.generate_drill_calls[0], ('translation', 3, 1200, None))

        outcome = await orchestrator.submit("The weather is good today")
        await orchestrator.flush()

        self.assertEqual(outcome.delta, 4)
        self.assertEqual(orchestrator.snapshot.profile.rating, 1204)
        self.assertEqual(len(self.storage.save_calls), 1)
        self.assertEqual(self.storage.save_calls[0]['profiles']['translation']['rating'], 1204)
        self.assertEqual(self.storage.save_calls[0]['profiles']['listening']['rating'], 1200)

    async def test_retry_is_practice(self):
        orchestrator = await self.make()
        await orchestrator.next_drill()
        await orchestrator.submit("first try")
        self.provider.set_score_response({'score': 10, 'feedback': []})
        replay = await orchestrator.submit("second try")
        await orchestrator.flush()

        self.assertEqual(replay.delta, 0)
        self.assertFalse(replay.rated)
        self.assertEqual(orchestrator.snapshot.profile.rating, 1204)
        self.assertEqual(orchestrator.snapshot.profile.streak, 1)
        self.assertEqual(len(self.storage.save_calls), 1)

    async def test_submit_without_drill(self):
        orchestrator = await self.make()
        with self.assertRaises(SessionError):
            await orchestrator.submit("anything")

    async def test_malformed_drill_leaves_state_alone(self):
        orchestrator = await self.make()
        self.provider.set_drill_response({'source_text': '', 'reference_answer': 'x'})
        with self.assertRaises(GenerationError):
            await orchestrator.next_drill(forced_kind='reaper')
        self.assertIsNone(orchestrator.snapshot.drill)
        self.assertIs(orchestrator.snapshot.encounter, NO_ENCOUNTER)

    async def test_malformed_score_leaves_rating_alone(self):
        orchestrator = await self.make()
        await orchestrator.next_drill()
        self.provider.set_score_response({'score': 'excellent'})
        with self.assertRaises(GenerationError):
            await orchestrator.submit("answer")
        self.assertFalse(orchestrator.snapshot.submitting)
        self.assertFalse(orchestrator.snapshot.drill_rated)
        self.assertEqual(orchestrator.snapshot.profile.rating, 1200)

        outcome = await orchestrator.submit("answer")
        self.assertEqual(outcome.delta, 4)

    async def test_provider_crash_keeps_drill_answerable(self):
        orchestrator = await self.make()
        await orchestrator.next_drill(forced_kind='lightning')
        orchestrator.acknowledge_intro()
        self.provider.score_errors.append(ConnectionError("connection reset"))

        with self.assertRaises(ConnectionError):
            await orchestrator.submit("answer")
        self.assertFalse(orchestrator.snapshot.submitting)
        self.assertFalse(orchestrator.snapshot.drill_rated)

        orchestrator.tick(1000)
        self.assertLess(orchestrator.snapshot.fuse.remaining, 100)

        outcome = await orchestrator.submit("answer")
        self.assertTrue(outcome.rated)
        self.assertFalse(orchestrator.snapshot.fuse.running)

    async def test_superseded_request_is_discarded(self):
        self.provider = BlockingAIProvider()
        orchestrator = await self.make()

        first = asyncio.create_task(orchestrator.next_drill())
        await self.wait_for(self.provider.entered.is_set)
        second = await orchestrator.next_drill()
        self.provider.release.set()

        self.assertIsNone(await first)
        self.assertIsNotNone(second)
        self.assertIs(orchestrator.snapshot.drill, second)
        self.assertEqual(second.source_text, '今天天气很好')

    async def test_reverser_scores_reversed(self):
        orchestrator = await self.make()
        drill = await orchestrator.next_drill(forced_kind='reverser')
        self.assertEqual(drill.encounter_kind, 'reverser')
        self.assertEqual(self.provider.generate_drill_calls[0][3], 'reverser')
        await orchestrator.submit("answer")
        self.assertTrue(self.provider.score_answer_calls[0][5])

    async def test_persistence_failure_is_logged(self):
        self.storage.fail_saves = True
        orchestrator = await self.make()
        await orchestrator.next_drill()
        with self.assertLogs('core.orchestrator', level='ERROR'):
            await orchestrator.submit("answer")
            await orchestrator.flush()
        self.assertEqual(orchestrator.snapshot.profile.rating, 1204)


class TestEncounters(OrchestratorTestCase):

    async def test_reaper_fight(self):
        orchestrator = await self.make()
        await orchestrator.next_drill(forced_kind='reaper')
        orchestrator.acknowledge_intro()
        for i in range(3):
            if i:
                await orchestrator.next_drill()
            self.provider.set_score_response({'score': 10})
            outcome = await orchestrator.submit("answer")
        self.assertEqual(outcome.events, ('boss_defeated',))
        self.assertEqual(orchestrator.snapshot.profile.rating, 1250)
        self.assertIs(orchestrator.snapshot.encounter, NO_ENCOUNTER)

    async def test_death_tears_down_after_delay(self):
        orchestrator = await self.make(teardown_delay=0.05)
        await orchestrator.next_drill(forced_kind='reaper')
        orchestrator.acknowledge_intro()
        for _ in range(3):
            self.provider.set_score_response({'score': 1})
            await orchestrator.submit("answer")
            if not orchestrator.snapshot.encounter.ending:
                await orchestrator.next_drill()

        self.assertTrue(orchestrator.snapshot.encounter.ending)
        self.assertEqual(orchestrator.snapshot.profile.rating, 1150)
        self.assertIsNone(await orchestrator.submit("too late"))

        await self.wait_for(lambda: orchestrator.snapshot.encounter is NO_ENCOUNTER)

    async def test_wager_with_double_down(self):
        self.provider.set_score_response({'score': 10})
        self.provider.set_score_response({'score': 10})
        orchestrator = await self.make(mode='listening', rng=ScriptedRandom([0.05]))

        await orchestrator.next_drill()
        self.assertIsInstance(orchestrator.snapshot.encounter, WagerEncounter)
        orchestrator.acknowledge_intro()
        orchestrator.choose_wager_tier('risky')
        self.assertTrue(orchestrator.snapshot.fuse.running)

        outcome = await orchestrator.submit("answer")
        self.assertEqual(outcome.delta, 60)
        orchestrator.double_down(True)

        await orchestrator.next_drill()
        outcome = await orchestrator.submit("answer")
        self.assertEqual(outcome.delta, 150)
        self.assertEqual(orchestrator.snapshot.profile.rating, 1410)

    async def test_submitting_over_double_down_offer_declines_it(self):
        self.provider.set_score_response({'score': 10})
        self.provider.set_score_response({'score': 10})
        orchestrator = await self.make(mode='listening', rng=ScriptedRandom([0.05]))

        await orchestrator.next_drill()
        orchestrator.acknowledge_intro()
        orchestrator.choose_wager_tier('risky')
        outcome = await orchestrator.submit("answer")
        self.assertEqual(outcome.delta, 60)
        self.assertTrue(orchestrator.snapshot.encounter.awaiting_double_down)

        await orchestrator.next_drill()
        before = orchestrator.snapshot.profile
        expected = rate_attempt(before, orchestrator.snapshot.tier, 10)
        outcome = await orchestrator.submit("answer")

        self.assertIs(orchestrator.snapshot.encounter, NO_ENCOUNTER)
        self.assertEqual(outcome.delta, expected.delta)
        self.assertNotIn('wager_won', outcome.events)
        self.assertEqual(orchestrator.snapshot.profile.rating, 1260 + expected.delta)

    async def test_wager_errors(self):
        orchestrator = await self.make()
        with self.assertRaises(SessionError):
            orchestrator.choose_wager_tier('risky')
        with self.assertRaises(SessionError):
            orchestrator.double_down(True)
        with self.assertRaises(SessionError):
            orchestrator.acknowledge_intro()

    async def test_manual_fuse_expiry(self):
        orchestrator = await self.make(teardown_delay=0.05)
        await orchestrator.next_drill(forced_kind='lightning')
        self.assertFalse(orchestrator.snapshot.fuse.running)
        orchestrator.acknowledge_intro()
        self.assertTrue(orchestrator.snapshot.fuse.running)

        outcome = orchestrator.tick(30000)
        await orchestrator.flush()

        self.assertEqual(outcome.delta, -20)
        self.assertEqual(orchestrator.snapshot.profile.rating, 1180)
        self.assertTrue(orchestrator.snapshot.encounter.ending)
        self.assertEqual(self.storage.save_calls[-1]['profiles']['translation']['rating'], 1180)
        self.assertIsNone(await orchestrator.submit("late"))
        await self.wait_for(lambda: orchestrator.snapshot.encounter is NO_ENCOUNTER)

    async def test_fuse_loop_expires(self):
        orchestrator = await self.make(tick_interval=0.001)
        await orchestrator.next_drill(forced_kind='lightning')
        orchestrator.acknowledge_intro()
        await self.wait_for(lambda: orchestrator.snapshot.encounter.ending, timeout=10.0)
        self.assertEqual(orchestrator.snapshot.profile.rating, 1180)

    async def test_next_drill_clears_ending_encounter(self):
        orchestrator = await self.make(teardown_delay=60)
        await orchestrator.next_drill(forced_kind='lightning')
        orchestrator.acknowledge_intro()
        orchestrator.tick(30000)
        await orchestrator.next_drill()
        self.assertIs(orchestrator.snapshot.encounter, NO_ENCOUNTER)
        self.assertFalse(orchestrator.snapshot.drill_rated)


class TestRoulette(OrchestratorTestCase):

    async def play(self, orchestrator, chambers, index):
        roulette = orchestrator.open_roulette()
        roulette.start_loading()
        for chamber in chambers:
            roulette.toggle_chamber(chamber)
        roulette.spin(forced_index=index)
        roulette.advance()
        roulette.advance()
        roulette.fire()
        return orchestrator.finish_roulette()

    async def test_survival_pays_bonus_and_forces_boss(self):
        orchestrator = await self.make()
        result = await self.play(orchestrator, [0, 1, 2], 5)
        await orchestrator.flush()

        self.assertEqual(result.outcome, 'survived')
        self.assertEqual(orchestrator.snapshot.profile.rating, 1250)
        self.assertEqual(self.storage.save_calls[-1]['profiles']['translation']['rating'], 1250)
        self.assertIsNone(orchestrator.roulette)

        await orchestrator.next_drill()
        encounter = orchestrator.snapshot.encounter
        self.assertIsInstance(encounter, BossEncounter)
        self.assertEqual(encounter.kind, 'roulette')
        self.assertTrue(encounter.intro_acknowledged)
        self.assertEqual(self.provider.generate_drill_calls[-1][3], 'roulette')
        self.assertIsNone(orchestrator.snapshot.pending_kind)

    async def test_death_forces_execution(self):
        orchestrator = await self.make()
        result = await self.play(orchestrator, [0], 0)
        self.assertTrue(result.died)
        self.assertEqual(orchestrator.snapshot.profile.rating, 1200)

        await orchestrator.next_drill()
        self.assertEqual(orchestrator.snapshot.encounter.kind, 'roulette_execution')
        self.assertEqual(orchestrator.snapshot.encounter.jackpot_multiplier, 2)

    async def test_result_settled_once(self):
        orchestrator = await self.make()
        roulette = orchestrator.open_roulette()
        with self.assertRaises(RouletteError):
            orchestrator.finish_roulette()
        roulette.start_loading()
        roulette.toggle_chamber(0)
        roulette.spin(forced_index=3)
        roulette.advance()
        roulette.advance()
        roulette.fire()
        orchestrator.finish_roulette(roulette)
        with self.assertRaises(RouletteError):
            orchestrator.finish_roulette(roulette)

    async def test_not_during_encounter(self):
        orchestrator = await self.make()
        await orchestrator.next_drill(forced_kind='echo')
        with self.assertRaises(SessionError):
            orchestrator.open_roulette()


class TestClose(OrchestratorTestCase):

    async def test_close_stops_everything(self):
        orchestrator = await self.make(tick_interval=0.001, teardown_delay=0.05)
        await orchestrator.next_drill(forced_kind='lightning')
        orchestrator.acknowledge_intro()
        orchestrator.tick(30000)
        self.assertTrue(orchestrator.snapshot.encounter.ending)

        await orchestrator.close()
        await asyncio.sleep(0.1)

        self.assertTrue(orchestrator.closed)
        self.assertTrue(orchestrator.snapshot.encounter.ending)
        self.assertIsNone(orchestrator.tick(100))
        self.assertEqual(len(self.storage.save_calls), 1)
        with self.assertRaises(SessionError):
            await orchestrator.next_drill()

    async def test_close_discards_in_flight_drill(self):
        self.provider = BlockingAIProvider()
        orchestrator = await self.make()
        pending = asyncio.create_task(orchestrator.next_drill())
        await self.wait_for(self.provider.entered.is_set)
        await orchestrator.close()
        self.provider.release.set()
        self.assertIsNone(await pending)
        self.assertIsNone(orchestrator.snapshot.drill)

    async def test_close_is_idempotent(self):
        orchestrator = await self.make()
        await orchestrator.close()
        await orchestrator.close()
        self.assertTrue(orchestrator.closed)


if __name__ == '__main__':
    unittest.main()

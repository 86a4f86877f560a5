import asyncio
from unittest import IsolatedAsyncioTestCase

from sync_client.agent import SyncAgent, full_snapshot
from sync_client.state import SYNC_STATE_KEY, LocalSyncState, MemoryKeyValueStore, save_local_sync_state
from sync_client.transport import SyncRequestError


class FakeTransport:
    def __init__(self):
        self.pushes = []
        self.push_failures = []
        self.next_last_synced_at = 1000

    async def setup(self, pin, existing_data=None):
        self.setup_args = (pin, existing_data)
        return {'success': True, 'syncCode': 'SIGNAL-ABC234', 'authToken': 'tok', 'lastSyncedAt': 500}

    async def login(self, sync_code, pin):
        if pin != '4242':
            raise SyncRequestError(401, 'Invalid PIN')
        return {
            'success': True,
            'syncCode': 'SIGNAL-ABC234',
            'authToken': 'tok',
            'data': {'todos': [{'id': 'remote'}], 'timerState': None, 'lastSyncedAt': 700},
        }

    async def push(self, sync_code, auth_token, snapshot):
        self.pushes.append((sync_code, auth_token, dict(snapshot)))
        if self.push_failures:
            raise self.push_failures.pop(0)
        self.next_last_synced_at += 1
        return {'success': True, 'lastSyncedAt': self.next_last_synced_at}

    async def pull(self, sync_code, auth_token):
        return {'todos': [{'id': 'pulled'}], 'recurringTasks': [], 'pauseLogs': [], 'timerState': None,
                'recurringAddedDates': ['2024-05-01'], 'lastSyncedAt': 900}


class SyncAgentTestCase(IsolatedAsyncioTestCase):
    def setUp(self):
        self.transport = FakeTransport()
        self.store = MemoryKeyValueStore()
        self.local = {'todos': [{'id': 'local'}]}
        self.applied = []
        self.statuses = []
        self.delays = []

    async def _record_sleep(self, delay):
        self.delays.append(delay)

    def make_agent(self, linked=True, **kwargs):
        if linked:
            save_local_sync_state(self.store, LocalSyncState('SIGNAL-ABC234', 'tok', 100))
        kwargs.setdefault('debounce', 0.01)
        kwargs.setdefault('sleep', self._record_sleep)
        return SyncAgent(
            self.transport,
            self.store,
            get_snapshot=lambda: full_snapshot(self.local),
            apply_snapshot=self.applied.append,
            on_status=self.statuses.append,
            **kwargs,
        )


class DebounceTests(SyncAgentTestCase):
    async def test_bursts_coalesce_into_one_push(self):
        agent = self.make_agent()
        for i in range(5):
            self.local = {'todos': [{'id': str(i)}]}
            agent.notify_changed()
        await asyncio.sleep(0.05)
        await agent.flush()
        self.assertEqual(len(self.transport.pushes), 1)
        self.assertEqual(self.transport.pushes[0][2]['todos'], [{'id': '4'}])

    async def test_push_carries_every_field_and_credentials(self):
        agent = self.make_agent()
        agent.notify_changed()
        await agent.flush()
        code, token, snapshot = self.transport.pushes[0]
        self.assertEqual((code, token), ('SIGNAL-ABC234', 'tok'))
        self.assertEqual(set(snapshot), {'todos', 'recurringTasks', 'pauseLogs', 'timerState', 'recurringAddedDates'})

    async def test_disabled_agent_never_pushes(self):
        agent = self.make_agent(linked=False)
        agent.notify_changed()
        await asyncio.sleep(0.03)
        await agent.flush()
        self.assertEqual(self.transport.pushes, [])
        self.assertFalse(await agent.push_now())

    async def test_flush_fires_pending_push_immediately(self):
        agent = self.make_agent(debounce=60)
        agent.notify_changed()
        await agent.flush()
        self.assertEqual(len(self.transport.pushes), 1)


class RetryTests(SyncAgentTestCase):
    async def test_success_updates_last_synced_at(self):
        agent = self.make_agent()
        self.assertTrue(await agent.push_now())
        self.assertEqual(agent.state.last_synced_at, 1001)
        self.assertIn('1001', self.store.get(SYNC_STATE_KEY))
        self.assertIsNone(agent.error)

    async def test_transient_failures_back_off_then_succeed(self):
        self.transport.push_failures = [SyncRequestError(None, 'offline'), SyncRequestError(503, 'busy')]
        agent = self.make_agent()
        self.assertTrue(await agent.push_now())
        self.assertEqual(self.delays, [1.0, 2.0])
        self.assertEqual(len(self.transport.pushes), 3)
        self.assertIsNone(agent.error)

    async def test_gives_up_after_three_retries(self):
        self.transport.push_failures = [SyncRequestError(500, 'Failed to save sync data')] * 10
        agent = self.make_agent()
        self.assertFalse(await agent.push_now())
        self.assertEqual(self.delays, [1.0, 2.0, 4.0])
        self.assertEqual(len(self.transport.pushes), 4)
        self.assertEqual(agent.error, 'Failed to save sync data')
        self.assertEqual(agent.state.last_synced_at, 100)

    async def test_backoff_is_capped(self):
        self.transport.push_failures = [SyncRequestError(None, 'offline')] * 10
        agent = self.make_agent(max_retries=5)
        await agent.push_now()
        self.assertEqual(self.delays, [1.0, 2.0, 4.0, 8.0, 10.0])

    async def test_auth_failure_is_not_retried(self):
        self.transport.push_failures = [SyncRequestError(401, 'Invalid authentication token')]
        agent = self.make_agent()
        self.assertFalse(await agent.push_now())
        self.assertEqual(self.delays, [])
        self.assertEqual(len(self.transport.pushes), 1)
        self.assertEqual(agent.error, 'Invalid authentication token')

    async def test_error_persists_until_next_success(self):
        self.transport.push_failures = [SyncRequestError(404, 'Sync code not found')]
        agent = self.make_agent()
        await agent.push_now()
        self.assertEqual(agent.status.error, 'Sync code not found')
        await agent.push_now()
        self.assertIsNone(agent.status.error)

    async def test_status_reports_syncing_during_push(self):
        agent = self.make_agent()
        await agent.push_now()
        self.assertTrue(self.statuses[0].syncing)
        self.assertFalse(self.statuses[-1].syncing)
        self.assertFalse(agent.syncing)


class LinkingTests(SyncAgentTestCase):
    async def test_setup_uploads_local_data_and_links(self):
        agent = self.make_agent(linked=False)
        state = await agent.setup('4242')
        self.assertEqual(state, LocalSyncState('SIGNAL-ABC234', 'tok', 500))
        pin, sent = self.transport.setup_args
        self.assertEqual(pin, '4242')
        self.assertEqual(sent, full_snapshot(self.local))
        self.assertEqual(self.applied, [full_snapshot(self.local)])
        self.assertTrue(agent.enabled)

    async def test_setup_rejects_bad_pin_locally(self):
        agent = self.make_agent(linked=False)
        with self.assertRaises(ValueError):
            await agent.setup('12')
        self.assertFalse(hasattr(self.transport, 'setup_args'))

    async def test_login_replaces_local_data(self):
        agent = self.make_agent(linked=False)
        state = await agent.login(' SIGNAL-ABC234 ', '4242')
        self.assertEqual(state.last_synced_at, 700)
        self.assertEqual(self.applied[-1]['todos'], [{'id': 'remote'}])
        self.assertEqual(self.applied[-1]['pauseLogs'], [])

    async def test_login_failure_leaves_device_unlinked(self):
        agent = self.make_agent(linked=False)
        with self.assertRaises(SyncRequestError):
            await agent.login('SIGNAL-ABC234', '0000')
        self.assertFalse(agent.enabled)
        self.assertEqual(self.applied, [])

    async def test_login_requires_code(self):
        agent = self.make_agent(linked=False)
        with self.assertRaises(ValueError):
            await agent.login('  ', '4242')

    async def test_refresh_applies_pulled_snapshot(self):
        agent = self.make_agent()
        snapshot = await agent.refresh()
        self.assertEqual(snapshot['todos'], [{'id': 'pulled'}])
        self.assertEqual(self.applied, [snapshot])
        self.assertEqual(agent.state.last_synced_at, 900)

    async def test_refresh_requires_link(self):
        agent = self.make_agent(linked=False)
        with self.assertRaises(RuntimeError):
            await agent.refresh()

    async def test_disconnect_forgets_credentials_and_pending_push(self):
        agent = self.make_agent(debounce=0.01)
        agent.notify_changed()
        agent.disconnect()
        await asyncio.sleep(0.03)
        self.assertIsNone(self.store.get(SYNC_STATE_KEY))
        self.assertFalse(agent.enabled)
        self.assertEqual(self.transport.pushes, [])

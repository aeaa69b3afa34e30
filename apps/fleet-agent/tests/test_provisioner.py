import pathlib
import sys
import threading
import unittest

import requests


ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fakes import FakeHttp, FakeResponse, wait_until
from fleet_agent.config import AgentConfig
from fleet_agent.identity import IdentityContext
from fleet_agent.provisioner import CredentialProvisioner
from fleet_agent.retry import RetryCancelled, RetryExhausted, RetryPolicy, retry_with_fixed_delay
from fleet_agent.store import RecordStore


def token_response(token):
    return FakeResponse({"data": {"token": token}})


class RetryTests(unittest.TestCase):
    def test_bounded_policy_raises_after_n_attempts(self):
        calls = []

        def boom():
            calls.append(1)
            raise ValueError("nope")

        with self.assertRaises(RetryExhausted) as cm:
            retry_with_fixed_delay(boom, RetryPolicy.bounded(3, 0), "op")
        self.assertEqual(len(calls), 3)
        self.assertEqual(cm.exception.attempts, 3)

    def test_unbounded_policy_keeps_going(self):
        outcomes = [ValueError("a")] * 25 + ["ok"]

        def flaky():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        waits = []
        result = retry_with_fixed_delay(
            flaky, RetryPolicy.forever(60), "op", wait=lambda s: waits.append(s) and False,
        )
        self.assertEqual(result, "ok")
        self.assertEqual(waits, [60] * 25)

    def test_stop_cancels_wait(self):
        stop = threading.Event()
        stop.set()
        with self.assertRaises(RetryCancelled):
            retry_with_fixed_delay(lambda: "never", RetryPolicy.forever(60), "op", stop=stop)

    def test_unlisted_errors_propagate(self):
        def broken():
            raise KeyError("bug")

        with self.assertRaises(KeyError):
            retry_with_fixed_delay(broken, RetryPolicy.forever(0), "op", retry_on=(ValueError,))


class ProvisionerTests(unittest.TestCase):
    def setUp(self):
        self.config = AgentConfig(provision_retry_delay=0)
        self.stop = threading.Event()
        self.ctx = IdentityContext.build(0, "0xabc", ["http://proxy:1"], use_proxy=True)

    def test_existing_token_is_never_replaced(self):
        store = RecordStore(None)
        store.set_token("0xabc", "kept")
        http = FakeHttp({"generate_token": [token_response("new")]})
        record = CredentialProvisioner(self.config, store, self.stop, http).provision(self.ctx)
        self.assertEqual(record.token, "kept")
        self.assertEqual(http.calls, [])

    def test_retries_until_token_and_persists(self):
        store = RecordStore(None)
        saves = []
        store.save = lambda: saves.append(store.snapshot())
        http = FakeHttp({"generate_token": [
            requests.ConnectionError("down"),
            FakeResponse(status_code=502),
            FakeResponse({"data": {}}),
            token_response("tok"),
        ]})
        record = CredentialProvisioner(self.config, store, self.stop, http).provision(self.ctx)

        self.assertEqual(record.token, "tok")
        self.assertEqual(len(http.calls), 4)
        self.assertEqual(saves[-1]["0xabc"]["token"], "tok")

    def test_unexpected_body_shapes_are_retried(self):
        http = FakeHttp({"generate_token": [
            FakeResponse(["unexpected"]),
            FakeResponse("scalar"),
            FakeResponse({"data": ["not", "an", "object"]}),
            FakeResponse({"data": {"token": 12}}),
            token_response("tok"),
        ]})
        record = CredentialProvisioner(self.config, RecordStore(None), self.stop, http).provision(self.ctx)
        self.assertEqual(record.token, "tok")
        self.assertEqual(len(http.calls), 5)

    def test_request_shape(self):
        http = FakeHttp({"generate_token": [token_response("tok")]})
        CredentialProvisioner(self.config, RecordStore(None), self.stop, http).provision(self.ctx)
        method, url, kwargs = http.calls[0]
        self.assertEqual(method, "POST")
        self.assertTrue(url.endswith("/api/v1/auth/generate_token"))
        self.assertEqual(kwargs["json"], {"address": "0xabc"})
        self.assertEqual(kwargs["proxies"], {"http": "http://proxy:1", "https": "http://proxy:1"})

    def test_shutdown_interrupts_unbounded_retry(self):
        config = AgentConfig(provision_retry_delay=60)
        http = FakeHttp({"generate_token": [requests.ConnectionError("down")]})
        provisioner = CredentialProvisioner(config, RecordStore(None), self.stop, http)
        result = {}
        t = threading.Thread(target=lambda: result.update(record=provisioner.provision(self.ctx)))
        t.start()
        self.assertTrue(wait_until(lambda: len(http.calls) >= 1))
        self.stop.set()
        t.join(timeout=2)
        self.assertFalse(t.is_alive())
        self.assertIsNone(result["record"])


if __name__ == "__main__":
    unittest.main()

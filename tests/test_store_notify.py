import asyncio
import io
import json
import urllib.error

import pytest

from modules.config import AppConfig, BroadcasterConfig, StoreConfig
from modules.notifier import HttpNotifier, LocalNotifier, get_notifier, make_event
from modules.store import StoreError, get_store
from modules.store.firebase_rest import FirebaseRestStore
from modules.store.memory import MemoryStore


class FakeResponse(io.BytesIO):
	def __enter__(self):
		return self

	def __exit__(self, *exc):
		self.close()
		return False


def test_get_store_falls_back_to_memory():
	assert isinstance(get_store(AppConfig()), MemoryStore)
	store = get_store(AppConfig(store=StoreConfig(url="https://demo.firebaseio.com/", auth_token="tok")))
	assert isinstance(store, FirebaseRestStore)


def test_memory_store_paths():
	async def scenario():
		s = MemoryStore()
		await s.put("patients/p1/height", 1.7)
		await s.put("patients/p1/skeletal_data/1", {"Head": {"x": 0}})
		height = await s.get("patients/p1/height")
		await s.delete("patients/p1/skeletal_data")
		return height, await s.get("patients/p1"), await s.get("patients/none")

	height, p1, missing = asyncio.run(scenario())
	assert height == 1.7
	assert p1 == {"height": 1.7}
	assert missing is None


def test_firebase_url_and_put(monkeypatch):
	seen = {}

	def fake_urlopen(req, timeout):
		seen["url"] = req.full_url
		seen["method"] = req.get_method()
		seen["body"] = json.loads(req.data.decode("utf-8"))
		seen["timeout"] = timeout
		return FakeResponse(b"null")

	monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
	store = FirebaseRestStore("https://demo.firebaseio.com/", auth_token="tok", timeout_s=3.0)
	asyncio.run(store.put("patients/F30AL202603010905/height", 1.72))
	assert seen["url"] == "https://demo.firebaseio.com/patients/F30AL202603010905/height.json?auth=tok"
	assert seen["method"] == "PUT"
	assert seen["body"] == 1.72
	assert seen["timeout"] == 3.0


@pytest.mark.parametrize("code,retryable", [(503, True), (429, True), (401, False), (400, False)])
def test_firebase_http_errors_map_to_store_error(monkeypatch, code, retryable):
	def fake_urlopen(req, timeout):
		raise urllib.error.HTTPError(req.full_url, code, "err", {}, None)

	monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
	store = FirebaseRestStore("https://demo.firebaseio.com")
	with pytest.raises(StoreError) as ei:
		asyncio.run(store.get("patients"))
	assert ei.value.retryable is retryable
	assert ei.value.status == code
	assert store.get_status()["failures"] == 1


def test_firebase_connection_error_is_retryable(monkeypatch):
	def fake_urlopen(req, timeout):
		raise urllib.error.URLError("connection refused")

	monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
	with pytest.raises(StoreError) as ei:
		asyncio.run(FirebaseRestStore("https://demo.firebaseio.com").get("patients"))
	assert ei.value.retryable is True


def test_get_notifier_picks_transport():
	assert isinstance(get_notifier(object(), AppConfig()), LocalNotifier)
	cfg = AppConfig(broadcaster=BroadcasterConfig(notify_url="http://127.0.0.1:5000/"))
	assert isinstance(get_notifier(object(), cfg), HttpNotifier)


def test_http_notifier_posts_event(monkeypatch):
	seen = {}

	def fake_urlopen(req, timeout):
		seen["url"] = req.full_url
		seen["body"] = json.loads(req.data.decode("utf-8"))
		return FakeResponse(b'{"detail":"Broadcast"}')

	monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
	n = HttpNotifier("http://127.0.0.1:5000/")
	assert asyncio.run(n.publish("height", {"patientId": "p1", "height": 1.7})) is True
	assert seen["url"] == "http://127.0.0.1:5000/notify"
	assert seen["body"] == make_event("height", {"patientId": "p1", "height": 1.7})
	assert n.get_status() == {"backend": "http", "sent": 1, "failed": 0}


def test_notifier_failures_are_reported_not_raised(monkeypatch):
	def fake_urlopen(req, timeout):
		raise urllib.error.URLError("broadcaster down")

	monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
	n = HttpNotifier("http://127.0.0.1:5000")
	assert asyncio.run(n.publish("skeletal", {})) is False
	assert n.failed == 1

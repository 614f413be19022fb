import re
import time

import pytest
from fastapi.testclient import TestClient

from conftest import FakeSensor, FlakyStore, frame_of, standing_body
from modules.config import AppConfig, TrackingConfig
from server import create_app, create_broadcaster_app


async def _no_sleep(delay):
	return None


@pytest.fixture
def sensor():
	return FakeSensor()


@pytest.fixture
def api_store():
	return FlakyStore()


@pytest.fixture
def client(sensor, api_store):
	cfg = AppConfig(tracking=TrackingConfig(capture_interval_ms=20))
	app = create_app(cfg, sensor_factory=lambda: sensor, store=api_store, sleep=_no_sleep)
	with TestClient(app) as c:
		yield c


def poll(fn, timeout=2.0):
	deadline = time.monotonic() + timeout
	while True:
		value = fn()
		if value:
			return value
		if time.monotonic() > deadline:
			raise AssertionError("condition not reached")
		time.sleep(0.02)


def wait_for_clients(client, n):
	manager = client.app.state.state.manager
	poll(lambda: manager.client_count == n)


@pytest.mark.parametrize("method", ["get", "post"])
def test_control_endpoints_accept_get_and_post(client, method):
	call = getattr(client, method)
	assert call("/startHeight/").json() == {"status": "Height capturing started"}
	assert call("/getHeight/").json() == {"status": "Measuring", "height": None}
	assert call("/stopHeight/").json() == {"status": "All tracking stopped"}
	assert call("/getHeight/").json()["status"] == "Idle"
	assert call("/startSkeletal/").json() == {"status": "Skeletal tracking started"}
	assert call("/stopSkeletal/").json() == {"status": "Skeletal tracking stopped"}


def test_height_capture_end_to_end(client, sensor, api_store):
	client.post("/startHeight/", params={"patientId": "F30AL202603010905"})
	sensor.emit(frame_of(standing_body(head_y=0.65)))

	def idle_height():
		r = client.get("/getHeight/").json()
		return r if r["status"] == "Idle" else None

	body = poll(idle_height)
	assert body["height"] == pytest.approx(1.84)
	assert api_store.dump()["patients"]["F30AL202603010905"]["height"] == pytest.approx(1.84)


def test_skeletal_capture_end_to_end(client, sensor, api_store):
	client.post("/startSkeletal/", params={"patientId": "p9"})

	def stored():
		sensor.emit(frame_of(standing_body()))
		return client.get("/status/").json()["frames"]["snapshots_stored"] >= 2

	poll(stored)
	client.post("/stopSkeletal/")
	snaps = api_store.dump()["patients"]["p9"]["skeletal_data"]
	assert len(snaps) >= 2
	status = client.get("/status/").json()
	assert status["session"]["mode"] == "Idle"
	assert status["frames"]["snapshots_stored"] >= 2


def test_status_reports_session_and_sensor(client):
	client.post("/startSkeletal/", params={"patientId": "p2"})
	status = client.get("/status/").json()
	assert status["session"]["mode"] == "TrackingSkeletal"
	assert status["session"]["patientId"] == "p2"
	assert status["session"]["captureIntervalMs"] == 20
	assert status["sensor"]["subscribed"] is True
	assert status["sensor"]["recovery"]["status"] == "ok"
	assert status["store"]["backend"] == "memory"
	assert status["notify"]["backend"] == "local"


def test_reconnect_sensor(client, sensor):
	assert client.post("/reconnectSensor/").json() == {"status": "Sensor reconnect started"}
	poll(lambda: client.get("/status/").json()["sensor"]["recovery"]["recoveries"] == 1)
	assert client.get("/status/").json()["sensor"]["subscribed"] is True


def test_register_patient(client):
	res = client.post("/api/patients", json={"name": "Alice", "age": 30, "gender": "Female", "height": 1.72})
	assert res.status_code == 201
	body = res.json()
	assert re.fullmatch(r"F30AL\d{12}", body["patientId"])
	assert body["patient"]["height"] == pytest.approx(1.72)
	listed = client.get("/api/patients").json()["patients"]
	assert [p["id"] for p in listed] == [body["patientId"]]
	# registration makes the new patient the active one
	assert client.get("/status/").json()["session"]["patientId"] == body["patientId"]


def test_register_duplicate_name_conflicts(client):
	assert client.post("/api/patients", json={"name": "Alice", "age": 30, "gender": "Female"}).status_code == 201
	res = client.post("/api/patients", json={"name": "ALICE", "age": 52, "gender": "Male"})
	assert res.status_code == 409
	assert "already exists" in res.json()["detail"]
	assert len(client.get("/api/patients").json()["patients"]) == 1


@pytest.mark.parametrize(
	"payload",
	[
		{"name": "", "age": 30, "gender": "Female"},
		{"name": "Bob", "age": -1, "gender": "Male"},
		{"name": "Bob", "age": 30},
	],
)
def test_register_validates_payload(client, payload):
	assert client.post("/api/patients", json=payload).status_code == 422


def test_register_store_down_is_503(client, api_store):
	api_store.fail_gets = True
	assert client.post("/api/patients", json={"name": "Bob", "age": 30, "gender": "Male"}).status_code == 503
	assert client.get("/api/patients").status_code == 503


def test_cors_allows_any_origin(client):
	res = client.get("/getHeight/", headers={"Origin": "http://dashboard.local"})
	assert res.headers.get("access-control-allow-origin") in ("*", "http://dashboard.local")


def test_index_page_injects_config(client):
	client.post("/api/patients", json={"name": "Alice", "age": 30, "gender": "Female"})
	res = client.get("/")
	assert res.status_code == 200
	html = res.text
	assert "window.__APP_CONFIG__" in html
	assert "<!-- APP_CONFIG -->" not in html
	assert "window.__PRELOADED_PATIENTS__" in html
	assert ">Alice</option>" in html


def test_websocket_receives_control_and_height_events(client, sensor):
	with client.websocket_connect("/ws") as ws:
		wait_for_clients(client, 1)
		client.post("/startHeight/", params={"patientId": "p1"})
		control = ws.receive_json()
		assert control == {"type": "control", "data": {"action": "startHeight", "patientId": "p1"}}
		sensor.emit(frame_of(standing_body(head_y=0.65)))
		height = ws.receive_json()
		assert height["type"] == "height"
		assert height["data"] == {"patientId": "p1", "height": pytest.approx(1.84)}


def test_notify_relays_events_verbatim(client):
	with client.websocket_connect("/ws") as ws:
		wait_for_clients(client, 1)
		res = client.post("/notify", json={"type": "skeletal", "data": {"patientId": "p1", "timestamp": 5}})
		assert res.json() == {"detail": "Broadcast", "clients": 1}
		assert ws.receive_json() == {"type": "skeletal", "data": {"patientId": "p1", "timestamp": 5}}


def test_broadcaster_app_fans_out():
	app = create_broadcaster_app()
	with TestClient(app) as c:
		with c.websocket_connect("/ws") as a, c.websocket_connect("/ws") as b:
			wait_for_clients(c, 2)
			res = c.post("/notify", json={"type": "height", "data": {"patientId": "p1", "height": 1.7}})
			assert res.json()["clients"] == 2
			assert a.receive_json()["data"]["height"] == 1.7
			assert b.receive_json()["data"]["height"] == 1.7
		assert c.post("/notify", json={"data": {}}).status_code == 422

import json

from modules.config import AppConfig, load_config


def test_missing_file_gives_defaults(tmp_path):
	cfg = load_config(tmp_path / "nope.json")
	assert cfg == AppConfig()
	assert cfg.tracking.capture_interval_ms == 500
	assert cfg.tracking.default_patient_id == "temp_patient"
	assert cfg.height.calibration == 1.15
	assert (cfg.height.min_m, cfg.height.max_m) == (1.0, 2.5)
	assert cfg.recovery.max_retries == 3
	assert cfg.server.port == 5001
	assert cfg.broadcaster.port == 5000


def test_malformed_file_gives_defaults(tmp_path):
	p = tmp_path / "config.json"
	p.write_text("{not json", encoding="utf-8")
	assert load_config(p) == AppConfig()


def test_values_are_read_and_sanitized(tmp_path):
	p = tmp_path / "config.json"
	p.write_text(
		json.dumps(
			{
				"store": {"url": " https://demo.firebaseio.com/ ", "timeout_seconds": -1},
				"sensor": {"backend": "Simulated", "frame_queue_size": 0, "max_null_frames": -4},
				"tracking": {"capture_interval_ms": "250", "select_new_patient": "false"},
				"height": {"method": "bogus", "calibration": 1.2, "min_m": 3.0, "max_m": 2.0},
				"recovery": {"max_retries": 5, "base_delay_seconds": 0.5},
				"broadcaster": {"notify_url": "http://127.0.0.1:5000"},
			}
		),
		encoding="utf-8",
	)
	cfg = load_config(p)
	assert cfg.store.url == "https://demo.firebaseio.com/"
	assert cfg.store.timeout_seconds == 5.0
	assert cfg.sensor.backend == "simulated"
	assert cfg.sensor.frame_queue_size == 8
	assert cfg.sensor.max_null_frames == 30
	assert cfg.tracking.capture_interval_ms == 250
	assert cfg.tracking.select_new_patient is False
	assert cfg.height.method == "head_foot_span"
	assert cfg.height.calibration == 1.2
	assert (cfg.height.min_m, cfg.height.max_m) == (1.0, 2.5)
	assert cfg.recovery.max_retries == 5
	assert cfg.recovery.base_delay_seconds == 0.5
	assert cfg.broadcaster.notify_url == "http://127.0.0.1:5000"

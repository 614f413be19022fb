import math

import pytest

from conftest import standing_body
from modules.config import HeightConfig
from modules.geometry import HeightCalibration, InvalidMeasurementError, calculate_height, head_foot_span, segment_sum
from modules.sensor.types import Body, Joint, TrackingState


def test_head_foot_span_uses_higher_foot():
	body = standing_body(head_y=0.65, foot_left_y=-0.95, foot_right_y=-0.90)
	assert head_foot_span(body) == pytest.approx(1.55)


def test_calculate_height_scales_and_rounds():
	body = standing_body(head_y=0.65, foot_left_y=-0.95, foot_right_y=-0.95)
	assert calculate_height(body) == pytest.approx(1.84)


def test_simulated_subject_measures_its_height(sim_frame):
	body = sim_frame.first_tracked()
	assert calculate_height(body) == pytest.approx(1.72, abs=0.01)


@pytest.mark.parametrize("head_y", [-0.20, 1.40])
def test_out_of_range_is_rejected(head_y):
	# span 0.75 m -> 0.86 m; span 2.35 m -> 2.70 m
	with pytest.raises(InvalidMeasurementError):
		calculate_height(standing_body(head_y=head_y))


def test_bounds_are_inclusive():
	cal = HeightCalibration(scale=1.0, min_m=1.0, max_m=2.5)
	assert calculate_height(standing_body(head_y=0.05, foot_left_y=-0.95, foot_right_y=-0.95), cal) == pytest.approx(1.0)


def test_untracked_head_is_rejected():
	body = standing_body(Head=TrackingState.NOT_TRACKED)
	with pytest.raises(InvalidMeasurementError, match="Head"):
		calculate_height(body)


def test_missing_foot_is_rejected():
	body = standing_body()
	joints = {k: v for k, v in body.joints.items() if k != "FootRight"}
	with pytest.raises(InvalidMeasurementError, match="FootRight"):
		calculate_height(Body(tracking_id=1, is_tracked=True, joints=joints))


def test_non_finite_is_rejected():
	with pytest.raises(InvalidMeasurementError):
		calculate_height(standing_body(head_y=math.nan))


def test_calibration_from_config():
	cal = HeightCalibration.from_config(HeightConfig(method="segment_sum", calibration=1.0, min_m=0.5, max_m=3.0))
	assert cal.method == "segment_sum"
	assert cal.scale == 1.0
	assert (cal.min_m, cal.max_m) == (0.5, 3.0)


def test_segment_sum_follows_joint_chains():
	joints = {}
	# straight vertical skeleton: torso 0.6 m, each leg 0.9 m
	ys = {
		"SpineBase": 0.0, "SpineMid": 0.2, "Neck": 0.45, "Head": 0.6,
		"HipLeft": 0.0, "KneeLeft": -0.45, "AnkleLeft": -0.85, "FootLeft": -0.9,
		"HipRight": 0.0, "KneeRight": -0.45, "AnkleRight": -0.85, "FootRight": -0.9,
	}
	for name, y in ys.items():
		joints[name] = Joint(name=name, x=0.0, y=y, z=2.0)
	body = Body(tracking_id=3, is_tracked=True, joints=joints)
	assert segment_sum(body) == pytest.approx(1.5)
	assert calculate_height(body, HeightCalibration(method="segment_sum", scale=1.0)) == pytest.approx(1.5)

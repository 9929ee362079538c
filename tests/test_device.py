import pytest

from gputune.device import (
    DEFAULT_FAN_TEMPERATURES,
    FanCurve,
    FanPoint,
    TelemetrySample,
    TuningSettings,
    new_device,
)


class TestFanCurve:

    def test_default_curve(self):
        curve = FanCurve.default()
        assert curve.temperatures == DEFAULT_FAN_TEMPERATURES
        assert curve.duties == (30, 40, 50, 70, 85)

    def test_set_duty(self):
        curve = FanCurve()
        curve.set_point(1, duty=55)
        assert curve.points[1] == FanPoint(50, 55)

    def test_set_temperature_keeps_order(self):
        curve = FanCurve()
        with pytest.raises(ValueError):
            curve.set_point(2, temperature=45)
        # Rejected edits leave the curve untouched
        assert curve == FanCurve.default()

    def test_duty_out_of_range(self):
        curve = FanCurve()
        with pytest.raises(ValueError):
            curve.set_point(0, duty=101)

    def test_bad_position(self):
        with pytest.raises(IndexError):
            FanCurve().set_point(5, duty=50)

    def test_wrong_point_count(self):
        with pytest.raises(ValueError):
            FanCurve([FanPoint(30, 30), FanPoint(60, 60)])


class TestDevice:

    def test_new_device_defaults(self):
        device = new_device(0, "RTX 4080", "550.54", vendor_capable=True)

        assert device.temperature == 0
        assert device.power_limit == 0
        assert device.tuning == TuningSettings()
        assert device.tuning.target_power_limit == 100
        assert device.tuning.target_core_clock == 0

    def test_update_skips_failed_fields(self):
        device = new_device(0, "RTX 4080")
        device.temperature = 60

        updated = device.update_from(TelemetrySample(power_usage=150, fan_speed=50))

        assert updated == 2
        assert device.temperature == 60
        assert device.power_usage == 150
        assert device.fan_speed == 50

    def test_target_power_watts(self):
        device = new_device(0, "RTX 4080")
        device.power_limit = 320
        device.tuning.target_power_limit = 85

        assert device.target_power_watts() == 272
        assert device.target_power_watts(110) == 352

    def test_memory_used_percent_without_total(self):
        assert new_device(0, "GPU").memory_used_percent == 0.0

    def test_history_is_bounded(self):
        device = new_device(0, "GPU", history_length=2)
        for t in range(4):
            device.temperature = 50 + t
            device.record_history(timestamp=float(t))

        assert [p.temperature for p in device.history] == [52, 53]

    def test_reset_tuning(self):
        device = new_device(0, "GPU")
        device.core_clock = 1700
        device.memory_clock = 6000
        device.tuning.target_power_limit = 70

        device.reset_tuning()

        assert device.tuning.target_core_clock == 1700
        assert device.tuning.target_memory_clock == 6000
        assert device.tuning.target_power_limit == 100
        assert device.tuning.fan_curve == FanCurve.default()

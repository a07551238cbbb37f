from __future__ import annotations

import pytest

from dosis_tool.errors import InvalidInputError
from dosis_tool.glycemia import (
    DEFAULT_THRESHOLDS,
    classify_glucose,
    convert_thresholds,
    needs_correction,
    thresholds_for_profile,
)
from dosis_tool.model import GlucoseUnit, GlycemicState, MedicalProfile, ThresholdSet


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (2.5, GlycemicState.HYPO),
        (3.9, GlycemicState.HYPO),
        (4.0, GlycemicState.NORMAL),
        (6.0, GlycemicState.NORMAL),
        (8.5, GlycemicState.NORMAL),
        (9.5, GlycemicState.NORMAL),
        (10.9, GlycemicState.NORMAL),
        (11.0, GlycemicState.HIGH),
        (13.9, GlycemicState.HIGH),
        (14.0, GlycemicState.CRITICAL),
        (25.0, GlycemicState.CRITICAL),
    ],
)
def test_classify_glucose_default_thresholds(
    value: float, expected: GlycemicState
) -> None:
    assert classify_glucose(value) == expected


def test_classify_glucose_with_mgdl_thresholds() -> None:
    thresholds = ThresholdSet(
        hypo=70,
        normal_min=70,
        normal_max=140,
        high=180,
        critical=250,
        unit=GlucoseUnit.MG_DL,
    )
    assert classify_glucose(3.8, thresholds) == GlycemicState.HYPO
    assert classify_glucose(5.0, thresholds) == GlycemicState.NORMAL
    assert classify_glucose(10.5, thresholds) == GlycemicState.HIGH
    assert classify_glucose(14.0, thresholds) == GlycemicState.CRITICAL


@pytest.mark.parametrize("value", [float("nan"), float("inf"), -1.0])
def test_classify_glucose_rejects_unusable_values(value: float) -> None:
    with pytest.raises(InvalidInputError):
        classify_glucose(value)


def test_classify_glucose_compares_mgdl_values_as_entered() -> None:
    thresholds = thresholds_for_profile(
        MedicalProfile(preferred_unit=GlucoseUnit.MG_DL, target_high=185)
    )
    assert classify_glucose(186, thresholds, GlucoseUnit.MG_DL) == GlycemicState.HIGH
    assert classify_glucose(185, thresholds, GlucoseUnit.MG_DL) == (
        GlycemicState.NORMAL
    )
    # mmol/L defaults scaled to mg/dL: high at 196.2, not the rounded 196.
    assert classify_glucose(196, DEFAULT_THRESHOLDS, GlucoseUnit.MG_DL) == (
        GlycemicState.NORMAL
    )


def test_threshold_set_to_unit_scales_exactly() -> None:
    mg = ThresholdSet(70, 70, 140, 185, 250, unit=GlucoseUnit.MG_DL)
    mmol = mg.to_unit(GlucoseUnit.MMOL_L)
    assert mmol.unit == GlucoseUnit.MMOL_L
    assert mmol.high == pytest.approx(185 / 18)
    assert mmol.to_unit(GlucoseUnit.MG_DL).high == pytest.approx(185)
    assert mg.to_unit(GlucoseUnit.MG_DL) is mg


def test_convert_thresholds_keeps_unit_tag() -> None:
    mg = convert_thresholds(DEFAULT_THRESHOLDS, GlucoseUnit.MG_DL)
    assert mg.unit == GlucoseUnit.MG_DL
    assert mg.hypo == 72
    assert mg.critical == 250
    assert convert_thresholds(DEFAULT_THRESHOLDS, GlucoseUnit.MMOL_L) is (
        DEFAULT_THRESHOLDS
    )


def test_thresholds_for_profile_overrides_and_defaults() -> None:
    assert thresholds_for_profile(None) is DEFAULT_THRESHOLDS

    profile = MedicalProfile(
        preferred_unit=GlucoseUnit.MG_DL, target_low=80, critical_high=0
    )
    thresholds = thresholds_for_profile(profile)
    assert thresholds.unit == GlucoseUnit.MG_DL
    assert thresholds.hypo == 80
    assert thresholds.high == 196
    assert thresholds.critical == 250


def test_profile_thresholds_change_classification() -> None:
    profile = MedicalProfile(target_low=4.5, target_high=9.0)
    thresholds = thresholds_for_profile(profile)
    assert classify_glucose(4.2, thresholds) == GlycemicState.HYPO
    assert classify_glucose(9.5, thresholds) == GlycemicState.HIGH


def test_needs_correction() -> None:
    assert needs_correction(GlycemicState.HIGH)
    assert needs_correction(GlycemicState.CRITICAL)
    assert not needs_correction(GlycemicState.NORMAL)
    assert not needs_correction(GlycemicState.HYPO)
    assert not needs_correction(None)

"""Tests for the effect catalog."""

import pytest

from vidfx.effects import EFFECTS, EffectId, filter_args, list_effects, lookup
from vidfx.errors import InputError, UnknownEffectError


class TestLookup:
    def test_sepia_expression(self) -> None:
        effect = lookup("sepia")
        assert effect.label == "Sepia"
        assert effect.filter_expression == (
            "colorchannelmixer=.393:.769:.189:0:.349:.686:.168:0:.272:.534:.131:0"
        )

    def test_accepts_enum(self) -> None:
        assert lookup(EffectId.BLUR).filter_expression == "gblur=sigma=2"

    def test_none_is_passthrough(self) -> None:
        effect = lookup("none")
        assert effect.filter_expression == ""
        assert effect.is_passthrough

    def test_unknown_effect(self) -> None:
        with pytest.raises(UnknownEffectError) as exc_info:
            lookup("posterize")
        assert exc_info.value.effect_id == "posterize"
        assert exc_info.value.kind == "unknown_effect"
        assert isinstance(exc_info.value, InputError)


class TestCatalog:
    def test_wire_ids_are_stable(self) -> None:
        assert set(EFFECTS) == {"none", "sepia", "grayscale", "vignette", "blur"}
        assert [e.value for e in EffectId] == list(EFFECTS)

    def test_list_effects(self) -> None:
        effects = dict(list_effects())
        assert effects["grayscale"] == "Grayscale"
        assert effects["vignette"] == "Vignette"

    def test_filter_args(self) -> None:
        assert filter_args("grayscale") == ["-vf", "format=gray"]
        assert filter_args("vignette") == ["-vf", "vignette=PI/4"]
        assert filter_args("none") == []

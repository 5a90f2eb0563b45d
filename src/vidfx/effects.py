"""Effect catalog shared by the local engine and the remote worker.

Filter expressions are opaque ffmpeg ``-vf`` arguments. Bump
``CATALOG_VERSION`` whenever an expression changes so previews and
worker output can be traced to the same revision.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from vidfx.errors import UnknownEffectError

CATALOG_VERSION = 1


class EffectId(str, Enum):
    """Stable effect identifiers (wire contract)."""

    NONE = "none"
    SEPIA = "sepia"
    GRAYSCALE = "grayscale"
    VIGNETTE = "vignette"
    BLUR = "blur"


class EffectDefinition(BaseModel):
    """A named visual transformation."""

    model_config = ConfigDict(frozen=True)

    label: str = Field(..., description="Human-readable name")
    filter_expression: str = Field("", description="ffmpeg video filter, empty for pass-through")

    @property
    def is_passthrough(self) -> bool:
        return not self.filter_expression


EFFECTS: dict[str, EffectDefinition] = {
    EffectId.NONE.value: EffectDefinition(label="Original", filter_expression=""),
    EffectId.SEPIA.value: EffectDefinition(
        label="Sepia",
        filter_expression="colorchannelmixer=.393:.769:.189:0:.349:.686:.168:0:.272:.534:.131:0",
    ),
    EffectId.GRAYSCALE.value: EffectDefinition(label="Grayscale", filter_expression="format=gray"),
    EffectId.VIGNETTE.value: EffectDefinition(label="Vignette", filter_expression="vignette=PI/4"),
    EffectId.BLUR.value: EffectDefinition(label="Blur", filter_expression="gblur=sigma=2"),
}


def lookup(effect_id: str | EffectId) -> EffectDefinition:
    """Resolve an effect identifier.

    Raises:
        UnknownEffectError: If the identifier is not registered.
    """
    key = effect_id.value if isinstance(effect_id, EffectId) else effect_id
    try:
        return EFFECTS[key]
    except KeyError:
        raise UnknownEffectError(str(key)) from None


def list_effects() -> list[tuple[str, str]]:
    """List all effects as (id, label) tuples."""
    return [(effect_id, effect.label) for effect_id, effect in EFFECTS.items()]


def filter_args(effect_id: str | EffectId) -> list[str]:
    """Return the encoder arguments for an effect ([] for pass-through)."""
    effect = lookup(effect_id)
    if effect.is_passthrough:
        return []
    return ["-vf", effect.filter_expression]

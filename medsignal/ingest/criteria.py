"""Product scoring criteria and sales signal rule configuration.

Criteria come in two shapes. Angle criteria carry weighted ``sales_angles``
scored by keyword coverage; legacy criteria carry need/fit/timing rule lists.
``parse_criteria`` picks the shape explicitly and validates it, so a broken
playbook fails at load time instead of producing silent zero scores.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal, Union

from jinja2 import Environment, TemplateSyntaxError
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

KeywordTier = Literal["primary", "secondary"]
SignalTrigger = Literal["equipment_removed", "equipment_added", "treatment_added", "treatment_removed"]
SignalPriority = Literal["HIGH", "MEDIUM", "LOW"]

DEFAULT_POINTS: dict[str, int] = {"primary": 20, "secondary": 10}
LEGACY_KEYS = ("need_rules", "fit_rules", "timing_rules")

TEMPLATE_ENV = Environment(autoescape=False, keep_trailing_newline=True)


class CriteriaError(ValueError):
    """Raised when a product's scoring playbook is missing or malformed."""


class SalesKeyword(BaseModel):
    term: str = Field(min_length=1)
    tier: KeywordTier = "secondary"
    point: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _default_point(self) -> "SalesKeyword":
        if self.point is None:
            self.point = DEFAULT_POINTS[self.tier]
        return self


class SalesAngle(BaseModel):
    id: str = Field(min_length=1)
    name: str | None = None
    label: str | None = None
    weight: float = Field(ge=0)
    keywords: list[SalesKeyword] = Field(default_factory=list)
    pitch: str | None = None
    description: str | None = None

    @field_validator("keywords", mode="before")
    @classmethod
    def _coerce_bare_terms(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [{"term": item, "tier": "secondary", "point": 10} if isinstance(item, str) else item for item in value]

    @property
    def display_name(self) -> str:
        return self.label or self.name or self.id


class SalesSignalRule(BaseModel):
    trigger: SignalTrigger
    match_keywords: list[str] = Field(min_length=1)
    priority: SignalPriority
    title_template: str
    description_template: str
    related_angle: str

    @field_validator("title_template", "description_template")
    @classmethod
    def _template_compiles(cls, value: str) -> str:
        try:
            TEMPLATE_ENV.parse(value)
        except TemplateSyntaxError as exc:
            raise ValueError(f"invalid template {value!r}: {exc.message}") from exc
        return value

    def render_title(self, item_name: str) -> str:
        return TEMPLATE_ENV.from_string(self.title_template).render(item_name=item_name)

    def render_description(self, item_name: str) -> str:
        return TEMPLATE_ENV.from_string(self.description_template).render(item_name=item_name)


class AngleCriteria(BaseModel):
    sales_angles: list[SalesAngle] = Field(min_length=1)
    combo_suggestions: list[dict[str, Any]] = Field(default_factory=list)
    max_pitch_points: int = Field(default=2, ge=0)
    exclude_if: list[str] = Field(default_factory=list)
    sales_signals: list[SalesSignalRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def _weights_present(self) -> "AngleCriteria":
        if sum(angle.weight for angle in self.sales_angles) <= 0:
            raise ValueError("sales_angles weights must sum to a positive number")
        return self

    @property
    def total_weight(self) -> float:
        return sum(angle.weight for angle in self.sales_angles)


class ScoringRule(BaseModel):
    condition: str = Field(min_length=1)
    score: float = Field(ge=0)
    reason: str = ""


class LegacyCriteria(BaseModel):
    need_rules: list[ScoringRule] = Field(default_factory=list)
    fit_rules: list[ScoringRule] = Field(default_factory=list)
    timing_rules: list[ScoringRule] = Field(default_factory=list)


Criteria = Union[AngleCriteria, LegacyCriteria]


def parse_criteria(raw: Any) -> Criteria:
    if isinstance(raw, (AngleCriteria, LegacyCriteria)):
        return raw
    if not isinstance(raw, Mapping):
        raise CriteriaError("scoring criteria must be a mapping")
    try:
        if "sales_angles" in raw:
            return AngleCriteria.model_validate(dict(raw))
        if any(key in raw for key in LEGACY_KEYS):
            return LegacyCriteria.model_validate(dict(raw))
    except ValidationError as exc:
        raise CriteriaError(str(exc)) from exc
    raise CriteriaError("scoring criteria has neither sales_angles nor need/fit/timing rules")


class ProductConfig(BaseModel):
    id: str = Field(min_length=1)
    name: str
    scoring_criteria: Criteria
    competing_keywords: list[str] = Field(default_factory=list)
    synergy_keywords: list[str] = Field(default_factory=list)
    requires_equipment_keywords: list[str] = Field(default_factory=list)

    @field_validator("scoring_criteria", mode="before")
    @classmethod
    def _dispatch_shape(cls, value: Any) -> Criteria:
        return parse_criteria(value)

    @property
    def signal_rules(self) -> list[SalesSignalRule]:
        if isinstance(self.scoring_criteria, AngleCriteria):
            return self.scoring_criteria.sales_signals
        return []

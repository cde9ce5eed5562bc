"""Model selectors and thinking levels for `pi` invocations.

`pi --model` accepts several spellings for the same thing, and this module normalizes them
before a command line is built:

- exact id: `claude-sonnet-4-5`
- provider-qualified: `anthropic/claude-sonnet-4-5`
- thinking shorthand: `sonnet:high` (the suffix is only split off when it names a valid
  thinking level; otherwise the colon is kept as part of the id)

Fuzzy resolution
`resolve_model()` maps a selector onto a list of known models (`provider/id` strings):
1. a case-insensitive exact id or `provider/id` match wins,
2. otherwise every known id containing the selector as a case-insensitive substring is a
   candidate (restricted to the selector's provider when one was given),
3. exactly one candidate resolves; zero or several raise `ValueError`.
An empty known list resolves nothing and returns the selector unchanged so `pi` can apply
its own matching.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from collections.abc import Iterable


class ThinkingLevel(str, Enum):
    OFF = "off"
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    XHIGH = "xhigh"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    # Order by deliberation, not alphabetically as `str` would.
    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ThinkingLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, ThinkingLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, ThinkingLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, ThinkingLevel):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: str | ThinkingLevel) -> ThinkingLevel:
        if isinstance(value, ThinkingLevel):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(lvl.value for lvl in _LEVEL_ORDER)
            raise ValueError(f"Unknown thinking level {value!r}; expected one of: {valid}") from None


_LEVEL_ORDER: list[ThinkingLevel] = list(ThinkingLevel)


@dataclass(frozen=True)
class ModelSelector:
    model: str
    provider: str | None = None
    thinking: ThinkingLevel | None = None

    @property
    def qualified(self) -> str:
        return f"{self.provider}/{self.model}" if self.provider else self.model


@dataclass(frozen=True)
class KnownModel:
    provider: str | None
    id: str

    @classmethod
    def parse(cls, text: str) -> KnownModel:
        text = text.strip()
        if "/" in text:
            provider, _, model_id = text.partition("/")
            return cls(provider=provider.strip() or None, id=model_id.strip())
        return cls(provider=None, id=text)


def parse_model_selector(text: str) -> ModelSelector:
    raw = text.strip()
    if not raw:
        raise ValueError("Model selector must be a non-empty string")

    thinking: ThinkingLevel | None = None
    head, sep, tail = raw.rpartition(":")
    if sep and head:
        try:
            thinking = ThinkingLevel.parse(tail)
            raw = head
        except ValueError:
            pass

    provider: str | None = None
    if "/" in raw:
        prefix, _, rest = raw.partition("/")
        if prefix and rest:
            provider, raw = prefix, rest

    return ModelSelector(model=raw, provider=provider, thinking=thinking)


def resolve_model(selector: ModelSelector, known: Iterable[str | KnownModel]) -> ModelSelector:
    models = [k if isinstance(k, KnownModel) else KnownModel.parse(k) for k in known]
    if not models:
        return selector

    if selector.provider:
        pool = [m for m in models if m.provider is None or m.provider.lower() == selector.provider.lower()]
    else:
        pool = models

    needle = selector.model.lower()
    exact = [m for m in pool if m.id.lower() == needle]
    if len(exact) == 1:
        return _resolved(selector, exact[0])

    hits = exact or [m for m in pool if needle in m.id.lower()]
    if not hits:
        raise ValueError(f"No known model matches selector {selector.qualified!r}")
    if len(hits) > 1:
        names = ", ".join(_display(m) for m in hits)
        raise ValueError(f"Ambiguous model selector {selector.qualified!r}; candidates: {names}")
    return _resolved(selector, hits[0])


def _resolved(selector: ModelSelector, model: KnownModel) -> ModelSelector:
    return replace(selector, model=model.id, provider=(model.provider or selector.provider))


def _display(model: KnownModel) -> str:
    return f"{model.provider}/{model.id}" if model.provider else model.id

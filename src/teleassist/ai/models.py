"""Model presets selectable per chat or chosen by the intent router."""

from __future__ import annotations

from dataclasses import dataclass

from teleassist.config import ModelsConfig

AUTO_KEY = "auto"


@dataclass(frozen=True)
class ModelProfile:
    key: str
    label: str
    id: str
    description: str
    temperature: float
    max_tokens: int


class ModelRegistry:
    """Preset table: auto, fast, smart, code, math, vision."""

    def __init__(self, config: ModelsConfig | None = None):
        config = config or ModelsConfig()
        self._profiles: dict[str, ModelProfile] = {
            "auto": ModelProfile("auto", "Auto", config.auto, "Intent-based automatic routing.", 0.45, 1200),
            "fast": ModelProfile("fast", "Fast", config.fast, "Low-latency general assistant.", 0.45, 900),
            "smart": ModelProfile("smart", "Smart", config.smart, "High quality general reasoning.", 0.4, 1400),
            "code": ModelProfile("code", "Code", config.code, "Coding, debugging, and architecture.", 0.2, 1600),
            "math": ModelProfile("math", "Math", config.math, "Mathematics and step-by-step reasoning.", 0.15, 1500),
            "vision": ModelProfile("vision", "Vision", config.vision, "Image-capable model where supported.", 0.35, 1200),
        }
        self.fallback_model_id = (config.fallback or "").strip() or config.fast or "openrouter/auto"

    def resolve(self, key: str | None) -> ModelProfile | None:
        """Case-insensitive lookup; None for missing or unknown keys."""
        if not key:
            return None
        return self._profiles.get(key.strip().lower())

    def get(self, key: str) -> ModelProfile:
        return self._profiles[key]

    def all(self) -> list[ModelProfile]:
        return list(self._profiles.values())

"""Resolve which collectors a collection run should use.

Schedules may name collectors directly (``collectors``) or through the AI
models a customer picked during onboarding (``ai_models``). An explicit
empty selection is meaningful and must stay empty; only a schedule that
says nothing falls back to the collection service's own defaults.
"""

from typing import Any

from jobengine.config import CollectorsConfig


def map_ai_models_to_collectors(ai_models: list[str], aliases: dict[str, str]) -> list[str]:
    """
    Map AI model names to collector names.

    Unknown names are dropped; the result keeps first-seen order without
    duplicates.

    Example:
        map_ai_models_to_collectors(["OpenAI", "gpt-4", "Gemini"], aliases)
        -> ["chatgpt", "gemini"]
    """
    collectors = []
    for model in ai_models:
        collector = aliases.get(model.strip().lower())
        if collector:
            collectors.append(collector)
    return list(dict.fromkeys(collectors))


def resolve_collectors(parameters: dict[str, Any], config: CollectorsConfig) -> list[str] | None:
    """
    Resolve the collector selection from schedule parameters.

    Returns:
        A list of collectors (possibly empty), or None to let the
        collection service apply its defaults
    """
    if "collectors" in parameters:
        collectors = parameters["collectors"]
        if collectors is None:
            return []
        if isinstance(collectors, str):
            return [value.strip() for value in collectors.split(",") if value.strip()]
        return [str(value) for value in collectors]

    if "ai_models" in parameters:
        ai_models = parameters["ai_models"]
        if not isinstance(ai_models, list):
            return []
        names = [value for value in ai_models if isinstance(value, str)]
        return map_ai_models_to_collectors(names, config.aliases)

    return None

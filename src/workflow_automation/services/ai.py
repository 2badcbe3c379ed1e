"""AI analysis collaborator for ai_analysis actions."""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from typing import Any

from pydantic_ai import Agent

from ..core.config import AIAnalysisConfig
from ..core.logger import get_logger

logger = get_logger("services.ai")


class AIAnalyzer(ABC):
    """Runs an analysis of structured data with a language model."""

    @abstractmethod
    def analyze(
        self,
        analysis_type: str,
        data: Any,
        model: str,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Analyse ``data`` and return the analysis payload."""


class PydanticAIAnalyzer(AIAnalyzer):
    """AIAnalyzer backed by pydantic-ai agents, one agent per model name.

    Example:
        ```python
        analyzer = PydanticAIAnalyzer(AIAnalysisConfig(default_model="openai:gpt-4o"))
        analyzer.analyze("sentiment", {"reviews": [...]}, "auto")
        ```
    """

    def __init__(self, config: AIAnalysisConfig | None = None) -> None:
        self.config = config or AIAnalysisConfig()
        self._agents: dict[str, Agent[None, str]] = {}
        self._lock = threading.Lock()

    def resolve_model(self, model: str | None) -> str:
        """Map the workflow model name to a concrete model ('auto' -> default)."""
        if not model or model == "auto":
            return self.config.default_model
        return model

    def _get_agent(self, model: str) -> Agent[None, str]:
        with self._lock:
            agent = self._agents.get(model)
            if agent is None:
                agent = Agent(model=model, output_type=str, system_prompt=self.config.system_prompt)
                self._agents[model] = agent
                logger.debug("Created analysis agent for model %s", model)
            return agent

    @staticmethod
    def build_prompt(analysis_type: str, data: Any) -> str:
        serialized = json.dumps(data, default=str, ensure_ascii=False, indent=2)
        return f"Analysis type: {analysis_type}\n\nData:\n{serialized}"

    def analyze(
        self,
        analysis_type: str,
        data: Any,
        model: str,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        resolved = self.resolve_model(model)
        agent = self._get_agent(resolved)
        limits = [value for value in (timeout, self.config.timeout) if value is not None]
        effective_timeout = min(limits) if limits else None

        model_settings: dict[str, Any] = {}
        if effective_timeout is not None:
            model_settings["timeout"] = effective_timeout

        result = agent.run_sync(
            self.build_prompt(analysis_type, data),
            model_settings=model_settings or None,
        )
        logger.info("Completed %s analysis with model %s", analysis_type, resolved)
        return {"analysis_type": analysis_type, "model": resolved, "analysis": result.output}

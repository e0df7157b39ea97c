"""Notification copywriter agent. Instructions loaded from notification_agent_instructions.md."""
from pathlib import Path

from pydantic_ai import Agent
from pydantic_ai.settings import ModelSettings

from app.config import settings

_INSTRUCTIONS_PATH = Path(__file__).resolve().parent / "notification_agent_instructions.md"
SYSTEM_PROMPT = _INSTRUCTIONS_PATH.read_text().strip()

MODEL_SETTINGS = ModelSettings(max_tokens=300, temperature=0.7)


def build_agent(model=None) -> Agent:
    return Agent(
        model=model or settings.ai_model,
        instructions=SYSTEM_PROMPT,
        retries=1,
        model_settings=MODEL_SETTINGS,
    )


class AgentContentBackend:
    """
    ContentBackend over a pydantic-ai Agent. The agent is built on first use so the
    service starts without model credentials.
    """

    def __init__(self, model=None):
        self._model = model
        self._agent: Agent | None = None

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            self._agent = build_agent(self._model)
        return self._agent

    async def complete(self, prompt: str) -> str:
        result = await self.agent.run(prompt)
        return result.output


def default_content_backend() -> AgentContentBackend | None:
    """Backend for the running service; None when no model is configured."""
    if not settings.ai_enabled:
        return None
    return AgentContentBackend()

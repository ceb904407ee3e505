"""Child agent types and the factory the sub-agent pool builds them with.

Each type is a prompt plus the features its agents get. Children never
get the sub-agent feature themselves, so trees are one level deep unless
a caller passes its own factory.

Types:
- Basic: a plain tool-less worker for one focused request
- Explorer: tracks its own task list while investigating
"""

import logging
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict

from tandem.agent.core import Agent
from tandem.agent.features.context import ContextFeature
from tandem.agent.features.todo import TodoFeature
from tandem.agent.prompts import BASIC_PROMPT, EXPLORER_PROMPT
from tandem.lib.features import Feature
from tandem.lib.loop import ModelClient
from tandem.lib.messages import LogSink

logger = logging.getLogger(__name__)


class AgentType(BaseModel):
    """Definition of a child agent type."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    description: str
    prompt: str
    features: Callable[[], list[Feature]]


def _no_features() -> list[Feature]:
    return []


def _explorer_features() -> list[Feature]:
    return [ContextFeature(), TodoFeature()]


AGENT_TYPES: dict[str, AgentType] = {
    "Basic": AgentType(
        description="General worker for one focused, self-contained request",
        prompt=BASIC_PROMPT,
        features=_no_features,
    ),
    "Explorer": AgentType(
        description="Investigates a question step by step and reports findings",
        prompt=EXPLORER_PROMPT,
        features=_explorer_features,
    ),
}


def build_agent_factory(
    client: ModelClient,
    *,
    sink: LogSink | None = None,
    max_steps: int | None = None,
) -> Callable[[str], Agent]:
    """Return a pool factory building agents of the built-in types.

    Every child shares ``client`` (and so its request throttle) and
    reports its log to ``sink``.

    Raises:
        ValueError: From the factory, for an unknown type.
    """

    def factory(type: str) -> Agent:
        definition = AGENT_TYPES.get(type)
        if definition is None:
            known = ", ".join(AGENT_TYPES)
            raise ValueError(f"Unknown agent type '{type}'. Available: {known}")
        logger.debug("Building %s agent", type)
        return Agent(
            client,
            features=definition.features(),
            max_steps=max_steps,
            system_message=definition.prompt,
            name=type,
            sink=sink,
        )

    return factory

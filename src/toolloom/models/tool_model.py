from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class ToolDefinition(BaseModel):
    """
    A tool offered to the model.
    - `name` is namespaced `<source>__<tool>` so tools from different sources never collide.
    - `parameters_schema` is a JSON-Schema object describing the arguments.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

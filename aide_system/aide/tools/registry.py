from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from aide.core.errors import ToolError, ValidationError


@dataclass
class ToolContext:
    user_id: str
    task_id: str | None = None
    task_context: dict = field(default_factory=dict)


Tool = Callable[[ToolContext, dict], Awaitable[Any]]


@dataclass
class ToolSpec:
    name: str
    fn: Tool
    description: str = ""
    parameters: dict = field(default_factory=lambda: {"type": "object", "properties": {}, "required": []})


class ToolRegistry:
    def __init__(self):
        self.tools: dict[str, ToolSpec] = {}

    def register(self, name: str, description: str = "", parameters: dict | None = None):
        def deco(fn: Tool):
            spec = ToolSpec(name=name, fn=fn, description=description)
            if parameters is not None:
                spec.parameters = parameters
            self.tools[name] = spec
            return fn
        return deco

    def get(self, name: str) -> Tool:
        if name not in self.tools:
            raise ToolError(f"Unknown tool: {name}. Known: {list(self.tools.keys())}")
        return self.tools[name].fn

    def names(self) -> list[str]:
        return list(self.tools.keys())

    def describe(self) -> list[dict]:
        """Function-call schemas handed to the completion collaborator."""
        return [
            {
                "type": "function",
                "function": {"name": s.name, "description": s.description, "parameters": s.parameters},
            }
            for s in self.tools.values()
        ]

    def catalog(self) -> str:
        return "\n".join(f"- {s.name}: {s.description}" for s in self.tools.values())


TOOLS = ToolRegistry()
register = TOOLS.register


def get_tool(name: str) -> Tool:
    return TOOLS.get(name)


def default_registry() -> ToolRegistry:
    # Capability modules register themselves on import.
    import aide.tools.calendar_events  # noqa: F401
    import aide.tools.crm  # noqa: F401
    import aide.tools.gmail  # noqa: F401
    return TOOLS


def require_params(params: dict, *keys: str) -> None:
    missing = [k for k in keys if params.get(k) in (None, "", [])]
    if missing:
        raise ValidationError(f"Missing required parameter(s): {', '.join(missing)}")

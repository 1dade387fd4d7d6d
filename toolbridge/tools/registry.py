from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from toolbridge.errors import ValidationError

_INTEGER_TEXT_RE = re.compile(r"^[+-]?\d+$")

_TYPE_CHECKS: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    label: str
    description: str
    surface: str
    schema: dict[str, object]
    mutating: bool = False

    @property
    def namespace(self) -> str:
        return self.name.split(".", 1)[0]

    @property
    def action(self) -> str:
        return self.name.split(".", 1)[1]

    def validate_args(self, args: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(args, dict):
            raise ValidationError(f"Tool '{self.name}' args must be an object.")

        required = self.schema.get("required")
        required_fields = required if isinstance(required, list) else []
        for field in required_fields:
            if not isinstance(field, str):
                continue
            if _is_blank(args.get(field)):
                raise ValidationError(f"Tool '{self.name}' missing required arg '{field}'.")

        required_any = self.schema.get("required_any")
        if isinstance(required_any, list):
            for group in required_any:
                if not isinstance(group, list):
                    continue
                if all(_is_blank(args.get(name)) for name in group if isinstance(name, str)):
                    options = " or ".join(f"'{name}'" for name in group)
                    raise ValidationError(f"Tool '{self.name}' requires one of {options}.")

        properties = self.schema.get("properties")
        if not isinstance(properties, dict):
            return dict(args)

        clean: dict[str, Any] = {}
        for key, value in args.items():
            prop = properties.get(key)
            if not isinstance(prop, dict):
                continue
            if value is None:
                continue
            expected = prop.get("type")
            expected_types = expected if isinstance(expected, list) else [expected]
            allowed: tuple[type, ...] = ()
            for type_name in expected_types:
                allowed += _TYPE_CHECKS.get(str(type_name), ())
            if not allowed:
                clean[key] = value
                continue
            if isinstance(value, str) and "integer" in expected_types and "string" not in expected_types:
                value = _coerce_integer(value)
            # bool is an int subclass; only accept it where a boolean is declared.
            if isinstance(value, bool) and "boolean" not in expected_types:
                raise ValidationError(
                    f"Tool '{self.name}' arg '{key}' must be {_describe(expected_types)}."
                )
            if not isinstance(value, allowed):
                raise ValidationError(
                    f"Tool '{self.name}' arg '{key}' must be {_describe(expected_types)}."
                )
            enum = prop.get("enum")
            if isinstance(enum, list) and value not in enum:
                raise ValidationError(
                    f"Tool '{self.name}' arg '{key}' must be one of: {', '.join(map(str, enum))}."
                )
            clean[key] = value
        return clean


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(
        self,
        *,
        name: str,
        label: str,
        description: str,
        surface: str,
        schema: dict[str, object],
        mutating: bool = False,
    ) -> None:
        self._tools[name] = ToolDefinition(
            name=name,
            label=label,
            description=description,
            surface=surface,
            schema=schema,
            mutating=mutating,
        )

    def get_definition(self, name: str) -> ToolDefinition:
        try:
            return self._tools[name]
        except KeyError as exc:
            raise ValidationError(f"Tool '{name}' is not registered.") from exc

    def has_namespace(self, namespace: str) -> bool:
        return any(tool.namespace == namespace for tool in self._tools.values())

    def namespaces(self) -> list[str]:
        return sorted({tool.namespace for tool in self._tools.values()})

    def list_tools(self) -> list[str]:
        return sorted(self._tools.keys())

    def definitions(self) -> list[ToolDefinition]:
        return [self._tools[name] for name in self.list_tools()]

    def render_for_prompt(self, *, unavailable: dict[str, str] | None = None) -> str:
        blocked = unavailable or {}
        lines = [
            "LOCAL TOOLS",
            "To run a local action, reply ONLY with a ```tool block and no other text:",
            "```tool",
            '{"tool":"<namespace>.<action>","args":{...}}',
            "```",
            "You may return one object or an array of objects to chain actions.",
        ]
        for namespace in self.namespaces():
            if namespace in blocked:
                lines.append(f"- {namespace}.*: unavailable ({blocked[namespace]})")
                continue
            for name in self.list_tools():
                tool = self._tools[name]
                if tool.namespace != namespace:
                    continue
                lines.append(f"- {tool.name}: {tool.description}")
                properties = tool.schema.get("properties")
                if isinstance(properties, dict):
                    for arg_name, arg_spec in properties.items():
                        if not isinstance(arg_name, str) or not isinstance(arg_spec, dict):
                            continue
                        arg_type = arg_spec.get("type") or "any"
                        if isinstance(arg_type, list):
                            arg_type = "|".join(str(item) for item in arg_type)
                        arg_desc = str(arg_spec.get("description") or "").strip()
                        lines.append(f"  - {arg_name} ({arg_type}): {arg_desc}")
        return "\n".join(lines)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def _describe(expected_types: list[Any]) -> str:
    names = [str(name) for name in expected_types if name]
    if not names:
        return "a valid value"
    if len(names) == 1:
        article = "an" if names[0][0] in "aeiou" else "a"
        return f"{article} {names[0]}"
    return " or ".join(names)


def _coerce_integer(value: str) -> int | str:
    # Surfaces hand tab ids around as text; a non-numeric string still fails the type check.
    text = value.strip()
    return int(text) if _INTEGER_TEXT_RE.match(text) else value

"""Field-level resolution of generation output against its JSON schema.

A stage's response is accepted as a whole as long as it is a JSON object;
each field is then checked against its own sub-schema. Missing fields and
malformed fields both fall back to typed defaults but are reported
separately, so callers can tell "the model left it out" from "the model
returned the wrong shape".
"""

from dataclasses import dataclass, field
from typing import Any

import jsonschema


@dataclass
class ResolvedFields:
    """Outcome of resolving a response against defaults."""
    values: dict = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    malformed: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing and not self.malformed

    def warnings(self) -> list[str]:
        return (
            [f"missing:{name}" for name in self.missing]
            + [f"malformed:{name}" for name in self.malformed]
        )


def resolve_fields(content: dict, schema: dict, defaults: dict[str, Any]) -> ResolvedFields:
    """Resolve each default-bearing field from ``content``.

    Array fields are checked for their outer shape only; their items are
    resolved one by one, so a single bad entry never discards the list.
    A non-conforming item is dropped, and a bad value inside an object
    item is removed so the consumer's own per-entry default applies.
    Item problems are reported as ``name[i]`` or ``name[i].key``.

    Args:
        content: Parsed JSON object returned by the gateway.
        schema: Output schema; ``properties`` sub-schemas validate fields.
        defaults: Field name -> value used when the field is missing,
            null, an empty string, or fails its sub-schema.
    """
    properties = schema.get("properties", {})
    result = ResolvedFields()

    for name, default in defaults.items():
        value = content.get(name)
        if value is None or value == "":
            result.values[name] = default
            result.missing.append(name)
            continue

        sub_schema = properties.get(name)
        if sub_schema is None:
            result.values[name] = value
            continue

        item_schema = sub_schema.get("items")
        if isinstance(item_schema, dict):
            outer = {k: v for k, v in sub_schema.items() if k != "items"}
            if not _is_valid(value, outer):
                result.values[name] = default
                result.malformed.append(name)
                continue
            result.values[name] = _resolve_items(name, value, item_schema, result)
            continue

        if not _is_valid(value, sub_schema):
            result.values[name] = default
            result.malformed.append(name)
            continue

        result.values[name] = value

    return result


def _resolve_items(name: str, items: list, item_schema: dict, result: ResolvedFields) -> list:
    item_properties = item_schema.get("properties")
    resolved = []
    for i, item in enumerate(items):
        label = f"{name}[{i}]"
        if item_properties and isinstance(item, dict):
            item = dict(item)
            for key, key_schema in item_properties.items():
                if key in item and not _is_valid(item[key], key_schema):
                    del item[key]
                    result.malformed.append(f"{label}.{key}")
            resolved.append(item)
        elif _is_valid(item, item_schema):
            resolved.append(item)
        else:
            result.malformed.append(label)
    return resolved


def _is_valid(value: Any, sub_schema: dict) -> bool:
    validator_cls = jsonschema.validators.validator_for(sub_schema)
    return validator_cls(sub_schema).is_valid(value)

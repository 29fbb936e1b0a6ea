"""Rendering of per-droplet command and output-path templates.

Templates reference droplet variables with double braces::

    nmap -p {{ports}} -oX - {{address}}

``{{.ports}}`` (leading dot) is accepted too. Shell syntax such as ``$HOME``
or ``${VAR}`` passes through untouched. Any unknown variable is an error.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from cloudproxy.exceptions import TemplateError

if TYPE_CHECKING:
    from cloudproxy.instance import Instance

_PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

ALIASES = {"ip": "address"}


@dataclass(frozen=True, slots=True)
class TemplateVars:
    """Values available to a template."""

    index: str
    address: str
    name: str
    ports: str = ""

    @classmethod
    def for_instance(cls, instance: Instance) -> TemplateVars:
        return cls(
            index=instance.label,
            address=instance.address,
            name=instance.name,
            ports=instance.ports,
        )


VARIABLES = frozenset(TemplateVars.__dataclass_fields__) | frozenset(ALIASES)


def _name(raw: str) -> str:
    name = raw.strip()
    if name.startswith("."):
        name = name[1:]
    if not name:
        raise TemplateError("Empty template placeholder '{{}}'")
    if not _NAME.match(name):
        raise TemplateError(f"Invalid template placeholder '{{{{{raw}}}}}'")
    return name


def _resolve(raw: str, values: dict[str, str]) -> str:
    name = _name(raw)
    key = ALIASES.get(name, name)
    if key not in values:
        raise TemplateError(
            f"Unknown template variable {name!r}. Valid: {', '.join(sorted(VARIABLES))}"
        )
    return values[key]


def render(template: str, variables: TemplateVars) -> str:
    """Substitute ``variables`` into ``template``.

    Raises:
        TemplateError: On an unknown variable, an empty placeholder or an
            unterminated ``{{``.
    """
    values = asdict(variables)
    parts: list[str] = []
    cursor = 0

    for match in _PLACEHOLDER.finditer(template):
        literal = template[cursor : match.start()]
        if "{{" in literal:
            raise TemplateError(f"Unterminated placeholder at offset {literal.index('{{')}")
        parts.append(literal)
        parts.append(_resolve(match.group(1), values))
        cursor = match.end()

    tail = template[cursor:]
    if "{{" in tail:
        raise TemplateError(f"Unterminated placeholder at offset {cursor + tail.index('{{')}")
    parts.append(tail)
    return "".join(parts)


def check(template: str) -> None:
    """Validate ``template`` up front, before any droplet exists."""
    render(template, TemplateVars(index="1", address="0.0.0.0", name="check", ports=""))


def names(template: str) -> set[str]:
    """Variables ``template`` references, aliases resolved.

    >>> sorted(names("out-{{index}}-{{ip}}.xml"))
    ['address', 'index']
    """
    check(template)
    return {
        ALIASES.get(name, name)
        for name in (_name(m.group(1)) for m in _PLACEHOLDER.finditer(template))
    }


__all__ = ["TemplateVars", "VARIABLES", "check", "names", "render"]

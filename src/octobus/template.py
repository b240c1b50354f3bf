"""Per-host command templating."""

from __future__ import annotations

import re
import shlex

from .errors import TemplateError
from .hosts import HostTarget

_PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}", re.S)
_NAME = re.compile(r"^[A-Za-z_]\w*$")


def _variables(target: HostTarget | str) -> dict[str, str]:
    if isinstance(target, str):
        return {"host": target, "raw": target}
    return {
        "host": target.host,
        "port": str(target.port),
        "user": target.user,
        "label": target.label,
        "raw": target.raw or target.host,
    }


def render_command(template: str, target: HostTarget | str) -> str:
    """Replace ``{{ name }}`` placeholders with values for ``target``.

    ``target`` is either a HostTarget or a bare host name. Available names
    are host, port, user, label and raw.
    """
    values = _variables(target)
    pieces = []
    pos = 0

    for match in _PLACEHOLDER.finditer(template):
        literal = template[pos:match.start()]
        if "{{" in literal or "}}" in literal:
            raise TemplateError(f"unbalanced braces in {template!r}")
        name = match.group(1).strip()
        if not name:
            raise TemplateError(f"empty placeholder in {template!r}")
        if not _NAME.match(name):
            raise TemplateError(f"invalid placeholder {{{{{match.group(1)}}}}} in {template!r}")
        if name not in values:
            raise TemplateError(f"unknown variable {name!r} in {template!r}")
        pieces.append(literal)
        pieces.append(values[name])
        pos = match.end()

    tail = template[pos:]
    if "{{" in tail or "}}" in tail:
        raise TemplateError(f"unbalanced braces in {template!r}")
    pieces.append(tail)
    return "".join(pieces)


def tail_command(path: str, sudo: bool = False) -> str:
    """Build the command that follows ``path`` on a remote host."""
    cmd = f"tail -f {shlex.quote(path)}"
    if sudo:
        cmd = "sudo " + cmd
    return cmd

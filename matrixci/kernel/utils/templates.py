"""``{name}`` placeholder templates for commands and publish destinations."""

import re
from collections.abc import Mapping

from matrixci.kernel.exceptions import ConfigurationError

# {name} placeholders; ${NAME} is left to the shell
_PLACEHOLDER = re.compile(r"(?<!\$)\{([a-z_]+)\}")


def placeholders(template: str) -> set[str]:
    """Names of the ``{name}`` placeholders in ``template``."""
    return set(_PLACEHOLDER.findall(template))


def render(template: str, params: Mapping[str, str], where: str) -> str:
    """Fill ``{name}`` placeholders from ``params``.

    Raises
    ------
    ConfigurationError
        If the template names a parameter ``params`` does not have.

    Examples
    --------
    >>> render("build.sh --cuda {accel} ${HOME}", {"accel": "11.0"}, "recipe")
    'build.sh --cuda 11.0 ${HOME}'
    """

    def substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in params:
            raise ConfigurationError(
                where,
                f"unknown placeholder '{{{key}}}' (available: {', '.join(sorted(params))})",
            )
        return params[key]

    return _PLACEHOLDER.sub(substitute, template)

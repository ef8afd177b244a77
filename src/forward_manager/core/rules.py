"""Forwarding rule parsing and validation.

This module turns the text of a forwards file into validated rules. Each
significant line has the form::

    listen_ip:listen_port:forward_ip:forward_port

Lines that are blank or start with ``#`` are ignored. A bad line never fails
the whole load: it is skipped and reported as a warning together with its
line number. When two rules claim the same listen endpoint the first one wins
and the later ones are reported as conflicts.

Example:
    ruleset = parse_rules("172.17.0.1:5000:127.0.0.1:5000\\n")
    for rule in ruleset.rules:
        print(rule)
"""

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Final

from loguru import logger

from .exceptions import ConfigError, ConflictError, ParseError

COMMENT_PREFIX: Final = "#"
FIELD_SEPARATOR: Final = ":"
FIELD_COUNT: Final = 4
MIN_PORT: Final = 1
MAX_PORT: Final = 65535

Endpoint = tuple[str, int]


@dataclass(frozen=True)
class Rule:
    """A validated mapping from one listen endpoint to one target endpoint.

    Attributes:
        listen_ip: IPv4 address to accept connections on
        listen_port: Port to accept connections on
        forward_ip: IPv4 address of the target
        forward_port: Port of the target
        line_number: Line of the forwards file the rule came from
    """

    listen_ip: str
    listen_port: int
    forward_ip: str
    forward_port: int
    line_number: int = field(default=0, compare=False)

    @property
    def listen_endpoint(self) -> Endpoint:
        return (self.listen_ip, self.listen_port)

    @property
    def forward_endpoint(self) -> Endpoint:
        return (self.forward_ip, self.forward_port)

    def __str__(self) -> str:
        return f"{self.listen_ip}:{self.listen_port} -> {self.forward_ip}:{self.forward_port}"


class WarningKind(str, Enum):
    PARSE = "parse"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class RuleWarning:
    """A line that was dropped while loading rules."""

    line_number: int
    reason: str
    kind: WarningKind = WarningKind.PARSE

    def __str__(self) -> str:
        return f"line {self.line_number}: {self.reason}"


@dataclass(frozen=True)
class RuleSet:
    """Ordered rules plus the warnings produced while loading them."""

    rules: tuple[Rule, ...] = ()
    warnings: tuple[RuleWarning, ...] = ()

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)


def _parse_ip(value: str, name: str) -> str:
    try:
        return str(ipaddress.IPv4Address(value))
    except ValueError as e:
        raise ParseError(f"invalid {name} {value!r}") from e


def _parse_port(value: str, name: str) -> int:
    # Plain ASCII digits only, no sign, underscores or other scripts
    if not (value.isascii() and value.isdigit()):
        raise ParseError(f"invalid {name} {value!r}")
    port = int(value)
    if not MIN_PORT <= port <= MAX_PORT:
        raise ParseError(f"{name} {port} out of range {MIN_PORT}-{MAX_PORT}")
    return port


def parse_line(line: str, line_number: int = 0) -> Rule:
    """Parse a single significant line into a rule.

    Args:
        line: Line text without comment or blank-line filtering
        line_number: Line number recorded on the rule

    Returns:
        Rule: The validated rule

    Raises:
        ParseError: If the line does not hold four valid fields
    """
    fields = [part.strip() for part in line.strip().split(FIELD_SEPARATOR)]
    if len(fields) != FIELD_COUNT or not all(fields):
        raise ParseError(
            f"expected listen_ip:listen_port:forward_ip:forward_port, got {line.strip()!r}"
        )

    listen_ip, listen_port, forward_ip, forward_port = fields
    return Rule(
        listen_ip=_parse_ip(listen_ip, "listen address"),
        listen_port=_parse_port(listen_port, "listen port"),
        forward_ip=_parse_ip(forward_ip, "forward address"),
        forward_port=_parse_port(forward_port, "forward port"),
        line_number=line_number,
    )


def parse_rules(text: str) -> RuleSet:
    """Parse forwards file text into a rule set.

    Args:
        text: Full configuration text

    Returns:
        RuleSet: Valid, non-conflicting rules in file order and the warnings
        for every line that was dropped
    """
    rules: list[Rule] = []
    warnings: list[RuleWarning] = []
    claimed: dict[Endpoint, Rule] = {}

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith(COMMENT_PREFIX):
            continue

        try:
            rule = parse_line(line, line_number)
            first = claimed.get(rule.listen_endpoint)
            if first is not None:
                raise ConflictError(
                    f"listen endpoint {rule.listen_ip}:{rule.listen_port} "
                    f"already used on line {first.line_number}"
                )
        except ParseError as e:
            warnings.append(RuleWarning(line_number, str(e), WarningKind.PARSE))
            continue
        except ConflictError as e:
            warnings.append(RuleWarning(line_number, str(e), WarningKind.CONFLICT))
            continue

        claimed[rule.listen_endpoint] = rule
        rules.append(rule)

    return RuleSet(rules=tuple(rules), warnings=tuple(warnings))


def load_rules(path: Path) -> RuleSet:
    """Read and parse a forwards file.

    Raises:
        ConfigError: If the file is missing, unreadable or not UTF-8
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"configuration file {path} not found")

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"cannot read configuration file {path}: {e}") from e

    ruleset = parse_rules(text)
    for warning in ruleset.warnings:
        logger.warning(f"{path}: skipping {warning.kind.value} {warning}")
    logger.info(f"Loaded {len(ruleset.rules)} rule(s) from {path}")
    return ruleset

"""Convert a robots.txt file into a list of bot policy rules."""

from __future__ import annotations

import argparse
import json
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import httpx
import yaml

_INT_PREFIX = re.compile(r"\s*([+-]?[0-9]+)")
_REGEX_META = set("\\.+*?()|[]{}^$")
_QUOTE_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"': '\\"',
}
_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}

_USAGE_EXAMPLES = """
Examples:
  # Convert local robots.txt file
  robots2policy -input robots.txt -output policy.yaml

  # Convert from URL
  robots2policy -input https://example.com/robots.txt -format json

  # Read from stdin, write to stdout
  curl https://example.com/robots.txt | robots2policy -input -
"""


@dataclass
class RobotsRule:
    """One user-agent section of a robots.txt file."""

    user_agent: str
    disallows: List[str] = field(default_factory=list)
    allows: List[str] = field(default_factory=list)
    crawl_delay: int = 0
    is_blacklist: bool = False


@dataclass
class AnubisRule:
    """A generated policy rule; ``expression`` holds the conditions that must all match."""

    name: str
    action: str
    expression: Optional[List[str]] = None
    weight: Optional[int] = None
    challenge: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """The rule as it is serialised, leaving out unset parts."""
        result: Dict[str, Any] = {}
        if self.expression is not None:
            result["expression"] = {"all": list(self.expression)}
        if self.challenge is not None:
            result["challenge"] = dict(self.challenge)
        if self.weight is not None:
            result["weight"] = {"adjust": self.weight}
        result["name"] = self.name
        result["action"] = self.action
        return result


@dataclass(frozen=True)
class ConversionOptions:
    """Settings that shape the generated rules."""

    action: str = "CHALLENGE"
    crawl_delay_weight: int = 0
    policy_name: str = "robots-txt-policy"
    deny_user_agents: str = "DENY"


def _go_quote(text: str) -> str:
    """Double-quote ``text`` with Go string-literal escaping."""
    out = ['"']
    for ch in text:
        if ch in _QUOTE_ESCAPES:
            out.append(_QUOTE_ESCAPES[ch])
        elif ch.isprintable():
            out.append(ch)
        else:
            code = ord(ch)
            if code < 0x20 or code == 0x7F:
                out.append(f"\\x{code:02x}")
            elif code < 0x10000:
                out.append(f"\\u{code:04x}")
            else:
                out.append(f"\\U{code:08x}")
    out.append('"')
    return "".join(out)


def _quote_meta(text: str) -> str:
    return "".join("\\" + ch if ch in _REGEX_META else ch for ch in text)


def _parse_int(text: str) -> Optional[int]:
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else None


def parse_robots_txt(lines: Union[str, Iterable[Union[str, bytes]]]) -> List[RobotsRule]:
    """Parse robots.txt text (a string or an iterable of lines) into rules."""
    if isinstance(lines, str):
        lines = lines.splitlines()

    rules: List[RobotsRule] = []
    current: Optional[RobotsRule] = None

    for raw in lines:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", "replace")
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        directive, sep, value = line.partition(":")
        if not sep:
            continue
        directive = directive.lower().strip()
        value = value.strip()

        if directive == "user-agent":
            if current is not None:
                rules.append(current)
            current = RobotsRule(user_agent=value)
        elif directive == "disallow":
            if current is not None and value:
                current.disallows.append(value)
        elif directive == "allow":
            if current is not None and value:
                current.allows.append(value)
        elif directive == "crawl-delay":
            if current is not None:
                delay = _parse_int(value)
                if delay is not None:
                    current.crawl_delay = delay

    if current is not None:
        rules.append(current)

    for rule in rules:
        if "/" in rule.disallows:
            rule.is_blacklist = True

    return rules


def _user_agent_condition(user_agent: str) -> str:
    return f"userAgent.contains({_go_quote(user_agent)})"


def build_path_condition(robots_path: str) -> str:
    """A condition matching request paths covered by a robots.txt path."""
    if "*" in robots_path or "?" in robots_path:
        regex = _quote_meta(robots_path)
        regex = regex.replace("\\*", ".*").replace("\\?", ".")
        return f"path.matches({_go_quote('^' + regex)})"
    return f"path.startsWith({_go_quote(robots_path)})"


def convert_to_anubis_rules(
    robots_rules: Iterable[RobotsRule], options: Optional[ConversionOptions] = None
) -> List[AnubisRule]:
    """Turn parsed robots.txt sections into policy rules."""
    opts = options or ConversionOptions()
    result: List[AnubisRule] = []
    counter = 0

    for robots_rule in robots_rules:
        user_agent = robots_rule.user_agent

        if robots_rule.crawl_delay > 0 and opts.crawl_delay_weight > 0:
            counter += 1
            condition = "true" if user_agent == "*" else _user_agent_condition(user_agent)
            result.append(
                AnubisRule(
                    name=f"{opts.policy_name}-crawl-delay-{counter}",
                    action="WEIGH",
                    weight=opts.crawl_delay_weight,
                    expression=[condition],
                )
            )

        if robots_rule.is_blacklist:
            counter += 1
            if user_agent == "*":
                # Blocking everyone outright is too strong; raise difficulty instead.
                result.append(
                    AnubisRule(
                        name=f"{opts.policy_name}-global-restriction-{counter}",
                        action="WEIGH",
                        weight=20,
                        expression=["true"],
                    )
                )
            else:
                result.append(
                    AnubisRule(
                        name=f"{opts.policy_name}-blacklist-{counter}",
                        action=opts.deny_user_agents,
                        expression=[_user_agent_condition(user_agent)],
                    )
                )
            continue

        for disallow in robots_rule.disallows:
            if disallow == "/":
                continue
            counter += 1
            conditions = []
            if user_agent != "*":
                conditions.append(_user_agent_condition(user_agent))
            conditions.append(build_path_condition(disallow))
            result.append(
                AnubisRule(
                    name=f"{opts.policy_name}-disallow-{counter}",
                    action=opts.action,
                    expression=conditions,
                )
            )

    return result


def render(rules: Sequence[AnubisRule], output_format: str = "yaml") -> str:
    """Serialise rules as ``yaml`` or ``json``."""
    data = [rule.to_dict() for rule in rules]
    fmt = output_format.lower()
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=True, default_flow_style=False, allow_unicode=True)
    if fmt == "json":
        text = json.dumps(data, indent=2, ensure_ascii=False)
        return "".join(_JSON_ESCAPES.get(ch, ch) for ch in text)
    raise ValueError(f"unsupported output format: {output_format} (use yaml or json)")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="robots2policy", add_help=False, allow_abbrev=False)
    parser.add_argument("-input", "--input", dest="input", default="", help="path to robots.txt file (use - for stdin)")
    parser.add_argument(
        "-output", "--output", dest="output", default="", help="output file path (use - for stdout, defaults to stdout)"
    )
    parser.add_argument("-format", "--format", dest="format", default="yaml", help="output format: yaml or json")
    parser.add_argument(
        "-action",
        "--action",
        dest="action",
        default="CHALLENGE",
        help="default action for disallowed paths: ALLOW, DENY, CHALLENGE, WEIGH",
    )
    parser.add_argument(
        "-crawl-delay-weight",
        "--crawl-delay-weight",
        dest="crawl_delay_weight",
        type=int,
        default=0,
        help="if > 0, add weight adjustment for crawl-delay (difficulty adjustment)",
    )
    parser.add_argument("-name", "--name", dest="name", default="robots-txt-policy", help="name for the generated policy")
    parser.add_argument(
        "-deny-user-agents",
        "--deny-user-agents",
        dest="deny_user_agents",
        default="DENY",
        help="action for specifically blocked user agents: DENY, CHALLENGE",
    )
    parser.add_argument("-h", "-help", "--help", dest="help", action="store_true", help="show help")
    parser.add_argument("rest", nargs="*", help=argparse.SUPPRESS)
    return parser


def _usage(parser: argparse.ArgumentParser) -> None:
    print("Usage of robots2policy:", file=sys.stderr)
    print("robots2policy [options] -input <robots.txt>\n", file=sys.stderr)
    parser.print_help(sys.stderr)
    print(_USAGE_EXAMPLES, end="", file=sys.stderr)
    sys.exit(2)


def _read_input(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    if source.startswith(("http://", "https://")):
        try:
            response = httpx.get(source, follow_redirects=True)
        except httpx.HTTPError as err:
            sys.exit(f"failed to fetch robots.txt from URL: {err}")
        return response.text
    try:
        with open(source, encoding="utf-8", errors="replace") as handle:
            return handle.read()
    except OSError as err:
        sys.exit(f"failed to open input file: {err}")


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = _parser()
    args = parser.parse_args(argv)

    if args.rest or args.help or not args.input:
        _usage(parser)

    rules = parse_robots_txt(_read_input(args.input))
    options = ConversionOptions(
        action=args.action,
        crawl_delay_weight=args.crawl_delay_weight,
        policy_name=args.name,
        deny_user_agents=args.deny_user_agents,
    )
    anubis_rules = convert_to_anubis_rules(rules, options)
    if not anubis_rules:
        sys.exit("no valid rules generated from robots.txt - file may be empty or contain no disallow directives")

    try:
        output = render(anubis_rules, args.format)
    except ValueError as err:
        sys.exit(str(err))

    if args.output in ("", "-"):
        sys.stdout.write(output)
        return
    try:
        with open(args.output, "w", encoding="utf-8") as handle:
            handle.write(output)
    except OSError as err:
        sys.exit(f"failed to write output file: {err}")
    print(f"Generated Anubis policy written to {args.output}")


if __name__ == "__main__":
    main()
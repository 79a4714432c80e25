"""Pattern matching and specificity ("arity") scoring.

A rule's arity is the sum of its segment weights:

- exact tool name: 1, tool glob: n/(n+1), ``"*"``: 0
- literal argument: 1, prefix/glob argument: n/(n+1), any: 0

where *n* is the number of literal (non-wildcard) characters.  Partial
weights stay below 1 and grow with *n*, so a literal always outranks a
pattern and a longer prefix outranks a shorter one.  Weights are exact
:class:`~fractions.Fraction` values so equal sums compare equal whatever
the order of their terms; convert with ``float()`` for display.

Also hosts the shell command-prefix table used to widen "always" grants
from ``git push origin main`` to ``git push *``.
"""

from __future__ import annotations

import fnmatch
import shlex
from collections.abc import Sequence
from fractions import Fraction

from toolgate.types.permissions import (
    ArgPattern,
    PatternKind,
    PermissionRequest,
    Rule,
    WILDCARD_CHARS,
)
from toolgate.types.tools import permission_name

EXACT_WEIGHT = Fraction(1)
NO_WEIGHT = Fraction(0)

# Scalars a pattern can be matched against
SCALAR_TYPES = (str, int, float, bool)


def _partial_weight(literal_chars: int) -> Fraction:
    return Fraction(literal_chars, literal_chars + 1)


def tool_weight(tool_pattern: str) -> Fraction:
    """Weight contributed by the rule's tool pattern."""
    if tool_pattern == "*":
        return NO_WEIGHT
    if any(c in WILDCARD_CHARS for c in tool_pattern):
        literal = sum(1 for c in tool_pattern if c not in WILDCARD_CHARS)
        return _partial_weight(literal)
    return EXACT_WEIGHT


def segment_weight(pattern: ArgPattern) -> Fraction:
    """Weight contributed by one argument pattern."""
    match pattern.kind:
        case PatternKind.LITERAL:
            return EXACT_WEIGHT
        case PatternKind.PREFIX | PatternKind.GLOB:
            return _partial_weight(pattern.literal_chars)
        case _:
            return NO_WEIGHT


def arity_of(rule: Rule) -> Fraction:
    """Score a rule receives whenever it matches a request."""
    score = tool_weight(rule.tool)
    for _, pattern in rule.arguments:  # sorted by name
        score += segment_weight(pattern)
    return score


def tool_matches(tool_pattern: str, tool_name: str) -> bool:
    """Case-sensitive tool name match (exact, glob or ``"*"``).

    An exact ``edit`` pattern also covers the other file-modifying tools.
    """
    if tool_pattern == "*":
        return True
    if any(c in WILDCARD_CHARS for c in tool_pattern):
        return fnmatch.fnmatchcase(tool_name, tool_pattern)
    return tool_pattern in (tool_name, permission_name(tool_name))


def value_matches(pattern: ArgPattern, value: object) -> bool:
    """Match one argument value. ``None`` means the argument is absent."""
    if pattern.kind is PatternKind.ANY:
        return True
    if value is None:
        return False
    if not isinstance(value, SCALAR_TYPES):
        raise TypeError(f"cannot match non-scalar value of type {type(value).__name__}")
    text = str(value)
    match pattern.kind:
        case PatternKind.LITERAL:
            return text == pattern.text
        case PatternKind.PREFIX:
            return text.startswith(pattern.text)
        case _:
            return fnmatch.fnmatchcase(text, pattern.text)


def match(rule: Rule, request: PermissionRequest) -> Fraction | None:
    """Return the rule's arity if it matches *request*, otherwise ``None``.

    Every declared segment must match; rules never partially apply.
    """
    if not tool_matches(rule.tool, request.tool_name):
        return None
    for name, pattern in rule.arguments:
        if not value_matches(pattern, request.arguments.get(name)):
            return None
    return arity_of(rule)


matches = match


# ---------------------------------------------------------------------------
# Shell command prefixes
# ---------------------------------------------------------------------------

# Number of leading tokens that identify a command family.  The longest
# matching key wins, so "npm run" (3) refines "npm" (2).
COMMAND_ARITY: dict[str, int] = {
    # Single token commands
    "cat": 1, "cd": 1, "chmod": 1, "chown": 1, "cp": 1, "echo": 1,
    "env": 1, "export": 1, "grep": 1, "kill": 1, "killall": 1, "ln": 1,
    "ls": 1, "mkdir": 1, "mv": 1, "ps": 1, "pwd": 1, "rm": 1, "rmdir": 1,
    "sleep": 1, "source": 1, "tail": 1, "touch": 1, "unset": 1, "which": 1,
    # Multi token commands
    "aws": 3, "az": 3, "bazel": 2, "brew": 2,
    "bun": 2, "bun run": 3, "bun x": 3,
    "cargo": 2, "cargo add": 3, "cargo run": 3,
    "cdk": 2, "cf": 2, "cmake": 2, "composer": 2,
    "consul": 2, "consul kv": 3, "crictl": 2,
    "deno": 2, "deno task": 3, "doctl": 3,
    "docker": 2, "docker builder": 3, "docker compose": 3,
    "docker container": 3, "docker image": 3, "docker network": 3,
    "docker volume": 3,
    "eksctl": 2, "eksctl create": 3, "firebase": 2, "flyctl": 2,
    "gcloud": 3, "gh": 3,
    "git": 2, "git config": 3, "git remote": 3, "git stash": 3,
    "go": 2, "gradle": 2, "helm": 2, "heroku": 2, "hugo": 2,
    "ip": 2, "ip addr": 3, "ip link": 3, "ip netns": 3, "ip route": 3,
    "kind": 2, "kind create": 3,
    "kubectl": 2, "kubectl kustomize": 3, "kubectl rollout": 3,
    "kustomize": 2, "make": 2, "mc": 2, "mc admin": 3, "minikube": 2,
    "mongosh": 2, "mysql": 2, "mvn": 2, "ng": 2,
    "npm": 2, "npm exec": 3, "npm init": 3, "npm run": 3, "npm view": 3,
    "nvm": 2, "nx": 2,
    "openssl": 2, "openssl req": 3, "openssl x509": 3,
    "pip": 2, "pipenv": 2,
    "pnpm": 2, "pnpm dlx": 3, "pnpm exec": 3, "pnpm run": 3,
    "poetry": 2, "podman": 2, "podman container": 3, "podman image": 3,
    "psql": 2, "pulumi": 2, "pulumi stack": 3, "pyenv": 2, "python": 2,
    "rake": 2, "rbenv": 2, "redis-cli": 2, "rustup": 2, "serverless": 2,
    "sfdx": 3, "skaffold": 2, "sls": 2, "sst": 2, "swift": 2,
    "systemctl": 2, "terraform": 2, "terraform workspace": 3, "tmux": 2,
    "turbo": 2, "ufw": 2, "vault": 2, "vault auth": 3, "vault kv": 3,
    "vercel": 2, "volta": 2, "wp": 2,
    "yarn": 2, "yarn dlx": 3, "yarn run": 3,
}

_SHELL_OPERATORS = frozenset({"&&", "||", ";", "|", "&", ";;", "|&"})


def command_prefix(tokens: Sequence[str]) -> list[str]:
    """Return the leading tokens that identify the command family."""
    for length in range(len(tokens), 0, -1):
        arity = COMMAND_ARITY.get(" ".join(tokens[:length]))
        if arity is not None:
            return list(tokens[:arity])
    return list(tokens[:1])


def split_commands(command: str) -> list[list[str]]:
    """Split a shell line into the token lists of its simple commands.

    Quote-aware; falls back to whitespace splitting on unbalanced quotes.
    """
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    try:
        tokens = list(lexer)
    except ValueError:
        tokens = command.split()

    commands: list[list[str]] = []
    current: list[str] = []
    for token in tokens:
        if token in _SHELL_OPERATORS:
            if current:
                commands.append(current)
            current = []
        else:
            current.append(token)
    if current:
        commands.append(current)
    return commands


def always_patterns(command: str) -> list[str]:
    """Patterns offered for an "always allow" answer, one per sub-command.

    ``cd`` is skipped since changing directory is not itself a privilege.
    """
    patterns: list[str] = []
    for tokens in split_commands(command):
        if tokens[0] == "cd":
            continue
        pattern = " ".join(command_prefix(tokens)) + " *"
        if pattern not in patterns:
            patterns.append(pattern)
    return patterns

"""
Governance policy for verification commands.

Test commands must be read-only inspections of the project. Anything that
reaches the network, installs packages or mutates the filesystem is
rejected before a subprocess is ever spawned.

Tool rules only fire where a word sits in command position: at the start
of the command, after a separator (``;``, ``&&``, ``|``, ``$(``, backtick,
subshell) or after a wrapper such as ``sudo``, ``xargs`` or ``sh -c``.
Options between a tool and its subcommand are skipped, so
``git -C . push`` is treated like ``git push``.
"""
import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Tuple

from .errors import GovernanceViolation


NETWORK = "network access"
PACKAGE_INSTALL = "package installation"
FS_MUTATION = "filesystem mutation"
DATA_TOOL = "structured-data tool"
CUSTOM = "custom rule"

SEPARATOR = r"(?:^|[;&|(`\n{]|\$\()"
# Words that run the following word as a command
WRAPPERS = (
    r"(?:sudo|env|nohup|exec|time|command|builtin|nice|xargs|eval"
    r"|doas|stdbuf|ionice|timeout(?:\s+-\S+)*\s+\S+"
    r"|if|then|else|elif|do|while|until|!|(?:ba|z|da|k)?sh)"
)
OPTIONS = r"(?:\s+-\S+(?:\s+[^-\s;&|]\S*)?)*"
ASSIGNMENTS = r"(?:\w+=\S*\s+)*"
COMMAND_POSITION = (
    SEPARATOR + r"\s*" + ASSIGNMENTS
    + r"(?:" + WRAPPERS + OPTIONS + r"\s+" + ASSIGNMENTS + r")*"
)
END = r"(?=\s|$|[;&|)`])"


def command(names: str, rest: str = "") -> str:
    """Pattern for one of ``names`` run as a command, optionally by path"""
    return COMMAND_POSITION + r"(?:\\|\S*/)?(?:" + names + r")" + END + rest


def subcommand(tools: str, names: str) -> str:
    return command(tools, OPTIONS + r"\s+(?:" + names + r")" + END)


DEFAULT_RULES: List[Tuple[str, str]] = [
    (NETWORK, command(r"curl|wget|nc|ncat|netcat|socat|ssh|scp|sftp|rsync|telnet|ftp|aria2c")),
    (NETWORK, subcommand(r"git", r"push|pull|fetch|clone|ls-remote|submodule")),
    (NETWORK, r"/dev/(?:tcp|udp)/"),
    (PACKAGE_INSTALL, subcommand(
        r"npm|pnpm|yarn|bun",
        r"install|i|add|ci|update|upgrade|up|remove|rm|uninstall|link|publish|dlx|exec|x|create|init",
    )),
    (PACKAGE_INSTALL, command(r"npx|pnpx|bunx")),
    (PACKAGE_INSTALL, subcommand(r"pip|pip3|pipx|poetry|uv", r"install|add|sync|download|uninstall")),
    (PACKAGE_INSTALL, command(r"uv", r"\s+pip" + OPTIONS + r"\s+(?:install|sync)" + END)),
    (PACKAGE_INSTALL, command(r"python[\d.]*", r"\s+-m\s+pip" + OPTIONS + r"\s+(?:install|download)" + END)),
    (PACKAGE_INSTALL, subcommand(
        r"apt|apt-get|brew|yum|dnf|apk|gem|cargo|go|conda|mamba|snap",
        r"install|add|get|update|upgrade",
    )),
    (FS_MUTATION, command(
        r"rm|rmdir|mv|cp|ln|unlink|install|chmod|chown|chgrp|touch|mkdir|mktemp"
        r"|truncate|shred|tee|patch"
    )),
    (FS_MUTATION, command(r"dd", r"[^;&|]*\sof=")),
    (FS_MUTATION, command(r"find", r"[^;&|]*\s-(?:delete|exec|execdir|ok|okdir|fprint0?|fprintf|fls)" + END)),
    (FS_MUTATION, command(r"sed", r"[^;&|]*\s-(?:[a-z]*i\S*|-in-place\S*)")),
    (FS_MUTATION, command(r"perl", r"[^;&|]*\s-[a-z]*i")),
    (FS_MUTATION, subcommand(
        r"git",
        r"commit|rebase|merge|reset|checkout|switch|stash|add|rm|mv|tag|clean|apply"
        r"|restore|init|am|cherry-pick|revert|gc|prune",
    )),
    (DATA_TOOL, command(r"jq|yq")),
]

# Redirection targets that do not touch project files
HARMLESS_REDIRECTS = re.compile(r"(\d?>>?\s*/dev/null|&>>?\s*/dev/null|\d?>&\d|<<<)")
QUOTED = re.compile(r"'[^']*'|\"(?:\\.|[^\"\\])*\"")
NESTED_SHELL = re.compile(r"\b(?:(?:ba|z|da|k)?sh\b[^;&|]*\s-[a-z]*c|eval)\b", re.I)


@dataclass
class CommandPolicy:
    """
    Deny-list of command pattern classes.

    Args:
        extra_denied_patterns: Additional regexes matched against the raw
            command, reported as custom rules
    """
    extra_denied_patterns: List[str] = field(default_factory=list)
    _compiled: List[Tuple[str, Pattern]] = field(init=False, repr=False)
    _custom: List[Pattern] = field(init=False, repr=False)

    def __post_init__(self):
        self._compiled = [
            (rule, re.compile(pattern, re.I)) for rule, pattern in DEFAULT_RULES
        ]
        self._custom = [re.compile(pattern, re.I) for pattern in self.extra_denied_patterns]

    def violation(self, command: str) -> Optional[str]:
        """Return the violated rule class, or None if allowed"""
        # Quote characters go, quoted words stay: "sh -c 'rm x'" still runs rm
        words = command.replace("'", " ").replace('"', " ")
        for rule, pattern in self._compiled:
            if pattern.search(words):
                return rule
        for pattern in self._custom:
            if pattern.search(command):
                return CUSTOM
        if self._writes_file(QUOTED.sub("''", command)):
            return FS_MUTATION
        if NESTED_SHELL.search(command) and self._writes_file(words):
            return FS_MUTATION
        return None

    def is_allowed(self, command: str) -> bool:
        return self.violation(command) is None

    def check(self, command: str, location: Optional[str] = None) -> None:
        """
        Raises:
            GovernanceViolation: If the command matches a disallowed class
        """
        rule = self.violation(command)
        if rule is not None:
            raise GovernanceViolation(command, rule, location=location)

    @staticmethod
    def _writes_file(command: str) -> bool:
        """Output redirection to anything but /dev/null or another stream"""
        return ">" in HARMLESS_REDIRECTS.sub(" ", command)

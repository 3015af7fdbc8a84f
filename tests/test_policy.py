"""
Tests for the command governance policy.

Verification commands must be read-only inspections; anything else is
rejected before a subprocess is spawned.
"""
import pytest

from standards_verifier.errors import GovernanceViolation, StructuralError
from standards_verifier.policy import (
    CUSTOM, DATA_TOOL, FS_MUTATION, NETWORK, PACKAGE_INSTALL, CommandPolicy,
)


class TestCommandPolicy:
    """CommandPolicy.violation / check"""

    def setup_method(self):
        self.policy = CommandPolicy()

    @pytest.mark.parametrize("command", [
        "test -f vitest.config.ts",
        "grep -q 'coverage' vitest.config.ts",
        "ls src | wc -l",
        "test -d node_modules 2>/dev/null",
        "grep -rq TODO src >/dev/null 2>&1",
        "find . -name '*.test.ts' | head -1",
        'grep -q "a > b" notes.md',
        "test -f src/lib/rm-utils.ts",
        'grep -q "mkdir" Makefile',
        "grep -q curl install.sh",
        "git -C packages/web log -1",
        "npm --prefix web ls vitest",
        "find src -name '*.spec.ts' -newer package.json",
    ])
    def test_read_only_commands_allowed(self, command):
        assert self.policy.is_allowed(command)

    @pytest.mark.parametrize("command,rule", [
        ("curl -s https://example.com", NETWORK),
        ("git fetch origin", NETWORK),
        ("npm install", PACKAGE_INSTALL),
        ("pnpm add -D vitest", PACKAGE_INSTALL),
        ("pip install requests", PACKAGE_INSTALL),
        ("rm -rf dist", FS_MUTATION),
        ("touch .flag", FS_MUTATION),
        ("sed -i 's/a/b/' file.txt", FS_MUTATION),
        ("echo hi > out.txt", FS_MUTATION),
        ("git commit -m wip", FS_MUTATION),
        ("jq .scripts package.json", DATA_TOOL),
        ("git -C . push", NETWORK),
        ("cat < /dev/tcp/example.com/80", NETWORK),
        ("npm --prefix . install x", PACKAGE_INSTALL),
        ("pnpm --filter web add zod", PACKAGE_INSTALL),
        ("npx cowsay hi", PACKAGE_INSTALL),
        ("bunx prettier --check .", PACKAGE_INSTALL),
        ("pnpm dlx create-vite", PACKAGE_INSTALL),
        ("npm exec -- eslint .", PACKAGE_INSTALL),
        ("python3 -m pip install requests", PACKAGE_INSTALL),
        ("find . -name '*.log' -delete", FS_MUTATION),
        ("find . -name '*.tmp' -exec rm {} +", FS_MUTATION),
        ("ln -s a b", FS_MUTATION),
        ("dd if=/dev/zero of=disk.img bs=1k count=1", FS_MUTATION),
        ("unlink stale.lock", FS_MUTATION),
        ("install -m 644 a.txt b.txt", FS_MUTATION),
        ("test -f a && /bin/rm -f b", FS_MUTATION),
        ("ls *.log | xargs -n 1 rm", FS_MUTATION),
        ("sh -c 'rm -rf dist'", FS_MUTATION),
        ("bash -c 'echo x > out.txt'", FS_MUTATION),
        ("git --no-pager -C . commit -m wip", FS_MUTATION),
        ("timeout 5 rm -rf dist", FS_MUTATION),
    ])
    def test_disallowed_commands(self, command, rule):
        assert self.policy.violation(command) == rule

    def test_check_raises_structural_error(self):
        with pytest.raises(GovernanceViolation) as exc_info:
            self.policy.check("wget http://x", location="a.md:3")
        error = exc_info.value
        assert isinstance(error, StructuralError)
        assert error.command == "wget http://x"
        assert error.rule == NETWORK
        assert "(at a.md:3)" in str(error)

    def test_extra_denied_patterns(self):
        policy = CommandPolicy(extra_denied_patterns=[r"\bdocker\b"])
        assert policy.violation("docker ps") == CUSTOM
        assert policy.is_allowed("test -f Dockerfile")

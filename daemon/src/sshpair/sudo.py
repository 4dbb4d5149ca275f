"""Sudo grants for paired users.

A grant is one sudoers directive in a per-user fragment under
``/etc/sudoers.d``. When the service runs as root the fragment is staged,
checked with ``visudo -c -f`` and only then renamed into place. Otherwise
the service hands back a shell command that performs the same steps, for
an operator to run by hand.

sudo skips files in ``sudoers.d`` whose names contain a ``.``, so the
staging file is never live, and fragment names never contain one.
"""

import asyncio
import logging
import os
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from sshpair.errors import (
    InvalidFormatError,
    MissingUsernameError,
    ValidationFailedError,
    WriteFailedError,
)
from sshpair.pairing.service import PairingService, utc_timestamp

logger = logging.getLogger(__name__)

FRAGMENT_PREFIX = "sshpair-"
FRAGMENT_MODE = 0o440

# POSIX portable user names
USERNAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]{0,31}$")


class SyntaxValidator(Protocol):
    """Protocol for the external sudoers syntax checker."""

    async def check(self, path: Path) -> tuple[bool, str]:
        """Return (ok, detail) for the file at ``path``."""
        ...


class VisudoValidator:
    """Checks sudoers files with ``visudo -c -f``."""

    def __init__(self, visudo_path: str = "visudo"):
        self.visudo_path = visudo_path

    async def check(self, path: Path) -> tuple[bool, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.visudo_path, "-c", "-f", str(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return False, f"{self.visudo_path} not found"
        stdout, stderr = await proc.communicate()
        detail = (stderr or stdout).decode(errors="replace").strip()
        return proc.returncode == 0, detail


def running_as_root() -> bool:
    return os.geteuid() == 0


@dataclass(frozen=True)
class SudoDirective:
    """A single sudoers line granting full privileges to one user."""

    username: str
    no_password: bool = False

    def __post_init__(self):
        if not USERNAME_PATTERN.match(self.username):
            raise InvalidFormatError(f"invalid username: {self.username[:32]!r}")

    def render(self) -> str:
        if self.no_password:
            return f"{self.username} ALL=(ALL) NOPASSWD: ALL"
        return f"{self.username} ALL=(ALL) ALL"

    def fragment_name(self) -> str:
        return FRAGMENT_PREFIX + self.username.replace(".", "_")


def fragment_content(directive: SudoDirective, timestamp: str) -> str:
    return f"# added by sshpair on {timestamp}\n{directive.render()}\n"


@dataclass(frozen=True)
class SudoersInstallPlan:
    """Deferred installation of a sudoers fragment.

    Holds what to write and where; ``render`` is the only place the shell
    command is built.
    """

    path: Path
    staging_path: Path
    content: str

    def render(self) -> str:
        """Shell command that stages, checks, and installs the fragment.

        Any failing step removes the staging file and leaves the live
        fragment untouched.
        """
        staging = shlex.quote(str(self.staging_path))
        target = shlex.quote(str(self.path))
        lines = " ".join(shlex.quote(line) for line in self.content.splitlines())
        return (
            f"printf '%s\\n' {lines} | sudo tee {staging} > /dev/null"
            f" && sudo chmod 0440 {staging}"
            f" && sudo visudo -c -f {staging}"
            f" && sudo mv {staging} {target}"
            f" || sudo rm -f {staging}"
        )


@dataclass(frozen=True)
class GrantResult:
    """Outcome of a sudo grant request."""

    applied: bool
    username: str
    file: Optional[str] = None
    command: Optional[str] = None

    @property
    def needs_privilege(self) -> bool:
        return not self.applied

    def to_dict(self) -> dict[str, Any]:
        if self.applied:
            return {"ok": True, "applied": True, "file": self.file}
        return {
            "ok": True,
            "applied": False,
            "needs_privilege": True,
            "command": self.command,
        }


class SudoGrantService:
    """Grants sudo to a named user, using the pairing token as proof."""

    def __init__(
        self,
        pairing: PairingService,
        sudoers_dir: Path = Path("/etc/sudoers.d"),
        validator: Optional[SyntaxValidator] = None,
        is_privileged: Callable[[], bool] = running_as_root,
        timestamp: Callable[[], str] = utc_timestamp,
    ):
        """Initialize sudo grant service.

        Args:
            pairing: Pairing service whose token gates grants.
            sudoers_dir: Directory holding sudoers fragments.
            validator: Syntax checker; defaults to visudo.
            is_privileged: Whether this process may write sudoers files.
            timestamp: Source of the fragment header timestamp.
        """
        self.pairing = pairing
        self.sudoers_dir = Path(sudoers_dir)
        self.validator = validator or VisudoValidator()
        self.is_privileged = is_privileged
        self._timestamp = timestamp
        self._write_lock = asyncio.Lock()

    def plan(self, directive: SudoDirective) -> SudoersInstallPlan:
        path = self.sudoers_dir / directive.fragment_name()
        return SudoersInstallPlan(
            path=path,
            staging_path=path.with_name(path.name + ".tmp"),
            content=fragment_content(directive, self._timestamp()),
        )

    async def request_grant(
        self,
        token: Optional[str],
        username: Optional[str] = None,
        no_password: bool = False,
        now: Optional[float] = None,
    ) -> GrantResult:
        """Grant sudo to ``username`` or the last paired peer user.

        Raises:
            InvalidTokenError: Token is not live.
            TokenExpiredError: Token is past its TTL.
            MissingUsernameError: No username and no paired peer.
            InvalidFormatError: Username is not a valid user name.
            ValidationFailedError: visudo rejected the fragment; nothing
                was installed.
            WriteFailedError: The fragment could not be written.
        """
        async with self.pairing.lock:
            credential = self.pairing.tokens.check(token, now=now)
        name = (username or "").strip() or credential.last_peer_user
        if not name:
            raise MissingUsernameError("missing username")

        directive = SudoDirective(name, no_password=no_password)
        plan = self.plan(directive)

        if not self.is_privileged():
            logger.info(f"Not privileged; returning sudo grant command for {name}")
            return GrantResult(applied=False, username=name, command=plan.render())

        async with self._write_lock:
            await self._install(plan)

        logger.info(f"Sudo granted to {name} via {plan.path}")
        return GrantResult(applied=True, username=name, file=str(plan.path))

    async def _install(self, plan: SudoersInstallPlan) -> None:
        try:
            fd = os.open(
                plan.staging_path,
                os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
                FRAGMENT_MODE,
            )
            try:
                os.write(fd, plan.content.encode("utf-8"))
            finally:
                os.close(fd)
            os.chmod(plan.staging_path, FRAGMENT_MODE)
        except OSError as e:
            self._discard(plan.staging_path)
            raise WriteFailedError(f"failed to write sudoers file: {e}")

        ok, detail = await self.validator.check(plan.staging_path)
        if not ok:
            self._discard(plan.staging_path)
            logger.warning(f"Sudoers validation failed for {plan.path.name}")
            raise ValidationFailedError(f"visudo validation failed: {detail}")

        try:
            os.replace(plan.staging_path, plan.path)
        except OSError as e:
            self._discard(plan.staging_path)
            raise WriteFailedError(f"failed to install sudoers file: {e}")

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Could not remove {path}: {e}")

"""
Vault command line tool wrapper.

Every interaction with the external ``bw`` binary goes through
``BWClient.run()``: one process at a time, argument lists only (no shell),
stdout captured, stdin wired to a ``CredentialChannel``. There is no
timeout: unlock and login may wait on a human typing a password.
"""

import base64
import json
import logging
import os
import subprocess
import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from ..exceptions import VaultCommandError, VaultToolUnavailableError
from .session_key import classify_failure

logger = logging.getLogger(__name__)


@dataclass
class CommandOutput:
    """Result of one vault tool invocation."""
    stdout: Union[str, bytes] = ""
    stderr: str = ""
    returncode: int = -1
    args: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def text(self) -> str:
        """stdout and stderr joined, for marker matching."""
        out = self.stdout
        if isinstance(out, bytes):
            out = out.decode("utf-8", errors="replace")
        return f"{out}\n{self.stderr}"


# ------------------------------------------------------------------
# Credential channels
# ------------------------------------------------------------------


class CredentialChannel(ABC):
    """Where the vault tool's standard input comes from."""

    interactive = False

    @abstractmethod
    def stdin_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``subprocess.run`` describing stdin."""


class InteractiveChannel(CredentialChannel):
    """Hand this process's own stdin to the tool, so a human can type credentials."""

    interactive = True

    def stdin_kwargs(self) -> Dict[str, Any]:
        return {"stdin": None}


class ScriptedChannel(CredentialChannel):
    """Feed pre-recorded answers, one per line."""

    interactive = True

    def __init__(self, lines: Sequence[str]):
        self.lines = list(lines)

    def stdin_kwargs(self) -> Dict[str, Any]:
        return {"input": "".join(f"{line}\n" for line in self.lines)}


class NullChannel(CredentialChannel):
    """No input at all."""

    def stdin_kwargs(self) -> Dict[str, Any]:
        return {"stdin": subprocess.DEVNULL}


# ------------------------------------------------------------------
# Client
# ------------------------------------------------------------------


def encode_payload(payload: Dict[str, Any]) -> str:
    """Base64 JSON, the form ``bw create`` expects (same as ``bw encode``)."""
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


class BWClient:
    """Thin, synchronous wrapper around the ``bw`` command line tool.

    Args:
        binary: Executable name or path.
        env: Base environment for child processes (default: os.environ).
    """

    def __init__(self, binary: str = "bw", env: Optional[Dict[str, str]] = None):
        self.binary = binary
        self._env = dict(os.environ if env is None else env)

    def run(
        self,
        *args: str,
        session: Optional[str] = None,
        channel: Optional[CredentialChannel] = None,
        raw: bool = False,
        echo_stderr: bool = False,
        extra_env: Optional[Dict[str, str]] = None,
    ) -> CommandOutput:
        """Run ``bw <args>`` and wait for it to finish.

        Args:
            session: Appended as ``--session <token>`` when given.
            channel: Source of stdin (default: no input).
            raw: Capture stdout as bytes (attachment downloads).
            echo_stderr: Copy stderr to the terminal as it arrives while
                still capturing it (the tool prints its prompts there).
            extra_env: Variables added to the child's environment only.

        Raises:
            VaultToolUnavailableError: The binary could not be launched.
        """
        argv = [self.binary, *args]
        if session:
            argv += ["--session", session]
        channel = channel or NullChannel()
        env = dict(self._env)
        if not channel.interactive:
            env["BW_NOINTERACTION"] = "true"
        if extra_env:
            env.update(extra_env)
        return self._execute(argv, channel, raw, echo_stderr, env)

    def _execute(
        self,
        argv: List[str],
        channel: CredentialChannel,
        raw: bool,
        echo_stderr: bool,
        env: Dict[str, str],
    ) -> CommandOutput:
        """Run a command on the local machine via subprocess."""
        kwargs = channel.stdin_kwargs()
        if raw and isinstance(kwargs.get("input"), str):
            kwargs["input"] = kwargs["input"].encode("utf-8")
        try:
            if echo_stderr and not raw and "input" not in kwargs:
                return self._execute_echoing(argv, kwargs, env)
            result = subprocess.run(
                argv,
                capture_output=True,
                text=not raw,
                env=env,
                **kwargs,
            )
        except OSError as e:
            raise VaultToolUnavailableError(f"could not launch {argv[0]}: {e}") from e

        stderr = result.stderr or ""
        if isinstance(stderr, bytes):
            stderr = stderr.decode("utf-8", errors="replace")
        return CommandOutput(
            stdout=result.stdout,
            stderr=stderr,
            returncode=result.returncode,
            args=argv,
        )

    @staticmethod
    def _execute_echoing(
        argv: List[str], stdin_kwargs: Dict[str, Any], env: Dict[str, str]
    ) -> CommandOutput:
        """Like subprocess.run, but stderr is mirrored to our stderr unbuffered."""
        proc = subprocess.Popen(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
            **stdin_kwargs,
        )
        captured: List[str] = []

        def pump():
            for chunk in iter(lambda: proc.stderr.read(1), ""):
                captured.append(chunk)
                sys.stderr.write(chunk)
                sys.stderr.flush()

        reader = threading.Thread(target=pump, daemon=True)
        reader.start()
        stdout = proc.stdout.read()
        proc.wait()
        reader.join()
        proc.stdout.close()
        proc.stderr.close()
        return CommandOutput(
            stdout=stdout,
            stderr="".join(captured),
            returncode=proc.returncode,
            args=argv,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def check(output: CommandOutput, action: str) -> CommandOutput:
        """Raise on a failed command; session markers map to session errors."""
        if output.ok:
            return output
        failure = classify_failure(output.text)
        if failure is not None:
            raise failure
        raise VaultCommandError(action, output.returncode, output.stderr)

    @staticmethod
    def _parse_json(output: CommandOutput, action: str) -> Any:
        try:
            return json.loads(output.stdout)
        except (TypeError, ValueError):
            raise VaultCommandError(action, output.returncode, "unparseable JSON output")

    # ------------------------------------------------------------------
    # Session commands (unchecked: callers inspect the text)
    # ------------------------------------------------------------------

    def unlock(self, channel: CredentialChannel) -> CommandOutput:
        return self.run("unlock", channel=channel, echo_stderr=True)

    def login(self, channel: CredentialChannel) -> CommandOutput:
        return self.run("login", channel=channel, echo_stderr=True)

    def login_with_password(
        self,
        email: str,
        password: str,
        method: Optional[int] = None,
        code: Optional[str] = None,
    ) -> CommandOutput:
        """Non-interactive login. The password travels in the child's env, not argv."""
        args = ["login", email, "--passwordenv", "PORTWARDEN_BW_PASSWORD", "--raw"]
        if method is not None and code:
            args += ["--method", str(method), "--code", code]
        return self.run(*args, extra_env={"PORTWARDEN_BW_PASSWORD": password})

    def logout(self) -> CommandOutput:
        return self.run("logout")

    # ------------------------------------------------------------------
    # Vault commands (checked)
    # ------------------------------------------------------------------

    def sync(self, session: str) -> None:
        self.check(self.run("sync", session=session), "sync")

    def list_items(self, session: str) -> List[Dict[str, Any]]:
        output = self.check(self.run("list", "items", session=session), "list items")
        return self._parse_json(output, "list items")

    def list_folders(self, session: str) -> List[Dict[str, Any]]:
        output = self.check(self.run("list", "folders", session=session), "list folders")
        return self._parse_json(output, "list folders")

    def get_attachment(self, session: str, item_id: str, attachment_id: str) -> bytes:
        output = self.check(
            self.run(
                "get", "attachment", attachment_id, "--itemid", item_id, "--raw",
                session=session, raw=True,
            ),
            "get attachment",
        )
        return output.stdout

    def create_item(self, session: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        output = self.check(
            self.run("create", "item", encode_payload(payload), session=session),
            "create item",
        )
        return self._parse_json(output, "create item")

    def create_folder(self, session: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        output = self.check(
            self.run("create", "folder", encode_payload(payload), session=session),
            "create folder",
        )
        return self._parse_json(output, "create folder")

    def create_attachment(self, session: str, item_id: str, file_path: str) -> Dict[str, Any]:
        output = self.check(
            self.run(
                "create", "attachment", "--file", file_path, "--itemid", item_id,
                session=session,
            ),
            "create attachment",
        )
        return self._parse_json(output, "create attachment")

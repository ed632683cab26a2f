from __future__ import annotations
from abc import ABC, abstractmethod
from asyncio import create_subprocess_exec
from dataclasses import dataclass, field
from pathlib import Path, PurePath, PurePosixPath, PureWindowsPath
from typing import ClassVar, Mapping, Optional, Sequence
import asyncio
from contextlib import suppress
import os
import shlex
import shutil
import signal
import uuid

from .async_timer import timer
from .config import TargetOS
from .errors import ConfigError, ExecutionError
from .logging import logger
from .result import ExecutionResult, classify, parse_outputs


log = logger()

DEFAULT_MOUNT_POINT = "/app"
DEFAULT_WINDOWS_MOUNT_POINT = "C:\\app"

SSH_OPTS: list[str] = [
    "-o", "BatchMode=yes",
    "-o", "StrictHostKeyChecking=accept-new",
    "-o", "ConnectTimeout=8",
]


def pure_path(target_os: TargetOS, *parts: str | PurePath) -> PurePath:
    if target_os is TargetOS.WINDOWS:
        return PureWindowsPath(*parts)
    return PurePosixPath(*parts)


def shell_command(
    commands: Sequence[str], target_os: TargetOS, fail_fast: bool = True
) -> list[str]:
    """Wrap a sequence of commands into a single shell invocation."""
    if target_os is TargetOS.WINDOWS:
        return ["cmd", "/c", (" && " if fail_fast else " & ").join(commands)]
    lines = (["set -e"] if fail_fast else []) + list(commands)
    return ["/bin/sh", "-c", "\n".join(lines)]


@dataclass
class CommandRunner(ABC):
    """Runs a sequence of shell commands against a staging directory.

    The staging directory is owned by the caller and should not be shared
    between concurrent runs. Input files are written into it before the run;
    output files are collected from it afterwards.
    """
    name: ClassVar[str]
    staging_dir: Path
    timeout: Optional[float] = None

    @abstractmethod
    def resolve_absolute_path(self, relative_path: str, target_os: TargetOS) -> str:
        """The absolute path under which the spawned process sees a file in
        the staging directory."""

    @abstractmethod
    def command_line(
        self,
        shell: list[str],
        container_image: str,
        env: Mapping[str, str],
        target_os: TargetOS,
    ) -> list[str]:
        """The argument vector that runs `shell` on this backend."""

    def process_env(self, env: Mapping[str, str]) -> Optional[dict[str, str]]:
        return None

    def process_cwd(self) -> Optional[Path]:
        return None

    async def upload(self) -> None:
        pass

    async def download(self) -> None:
        pass

    def stage_inputs(self, input_files: Mapping[str, str | Path]) -> None:
        root = self.staging_dir.resolve()
        root.mkdir(parents=True, exist_ok=True)
        for rel, source in input_files.items():
            dest = (root / rel).resolve()
            if not dest.is_relative_to(root):
                raise ConfigError(f"input file `{rel}` lies outside the staging directory")
            dest.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(source, Path):
                if source.resolve() != dest:
                    shutil.copyfile(source, dest)
            else:
                dest.write_text(source, encoding="utf-8")
            log.debug("staged `%s`", rel)

    def collect_outputs(self, patterns: Sequence[str]) -> dict[str, Path]:
        root = self.staging_dir.resolve()
        found: dict[str, Path] = {}
        for pattern in patterns:
            try:
                matches = sorted(root.glob(pattern))
            except (NotImplementedError, ValueError) as e:
                raise ConfigError(f"invalid output pattern `{pattern}`: {e}") from e
            for p in matches:
                p = p.resolve()
                if p.is_file() and p.is_relative_to(root):
                    found[p.relative_to(root).as_posix()] = p
        return found

    async def terminate(self, proc: asyncio.subprocess.Process) -> None:
        """Kill the process and everything it started."""
        with suppress(ProcessLookupError):
            if os.name == "nt":
                proc.kill()
            else:
                os.killpg(proc.pid, signal.SIGKILL)

    async def spawn(
        self,
        argv: list[str],
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> tuple[int, str, str]:
        log.debug("running `%s`", shlex.join(argv))
        proc = await create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=cwd,
            start_new_session=os.name != "nt",
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except TimeoutError:
            await self.terminate(proc)
            await proc.wait()
            log.error("`%s` timed out after %ss", argv[0], self.timeout)
            raise
        log.debug(f"return-code {proc.returncode}")
        assert proc.returncode is not None
        return (
            proc.returncode,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )

    async def run(
        self,
        commands: Sequence[str],
        input_files: Mapping[str, str | Path],
        output_files: Sequence[str],
        container_image: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        target_os: TargetOS = TargetOS.LINUX,
        fail_fast: bool = True,
        warning_on_std_err: bool = True,
    ) -> ExecutionResult:
        env = env or {}
        self.stage_inputs(input_files)
        await self.upload()

        argv = self.command_line(
            shell_command(commands, target_os, fail_fast), container_image, env, target_os
        )
        async with timer() as t:
            exit_code, stdout, stderr = await self.spawn(
                argv, self.process_env(env), self.process_cwd()
            )

        if stderr:
            log.info("[gold1]stderr[/] %s", stderr.rstrip(), extra={"markup": True})

        await self.download()
        return ExecutionResult(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            output_files=self.collect_outputs(output_files),
            vars=parse_outputs(stdout),
            state=classify(exit_code, stderr, warning_on_std_err),
            elapsed=t.elapsed,
        )


@dataclass
class LocalRunner(CommandRunner):
    """Run commands as a process on this machine, inside the staging directory.
    The container image is ignored."""
    name: ClassVar[str] = "local"

    def resolve_absolute_path(self, relative_path: str, target_os: TargetOS) -> str:
        return str(pure_path(target_os, self.staging_dir.resolve() / relative_path))

    def command_line(self, shell, container_image, env, target_os):
        return shell

    def process_env(self, env):
        return {**os.environ, **env}

    def process_cwd(self):
        return self.staging_dir


@dataclass
class DockerRunner(CommandRunner):
    """Run commands in a throw-away container with the staging directory
    mounted at `mount_point`."""
    name: ClassVar[str] = "docker"
    mount_point: Optional[str] = None
    docker: str = "docker"
    pull: str = "missing"
    extra_args: list[str] = field(default_factory=list)
    container_name: Optional[str] = field(default=None, init=False)

    def mount(self, target_os: TargetOS) -> str:
        if self.mount_point is not None:
            return self.mount_point
        if target_os is TargetOS.WINDOWS:
            return DEFAULT_WINDOWS_MOUNT_POINT
        return DEFAULT_MOUNT_POINT

    def resolve_absolute_path(self, relative_path: str, target_os: TargetOS) -> str:
        return str(pure_path(target_os, self.mount(target_os), relative_path))

    def command_line(self, shell, container_image, env, target_os):
        mount = self.mount(target_os)
        self.container_name = f"rtask-{uuid.uuid4().hex[:12]}"
        env_args = [a for k, v in env.items() for a in ("-e", f"{k}={v}")]
        return [
            self.docker, "run", "--rm",
            "--name", self.container_name,
            f"--pull={self.pull}",
            "-v", f"{self.staging_dir.resolve()}:{mount}",
            "-w", mount,
            *env_args,
            *self.extra_args,
            container_image,
            *shell,
        ]

    async def terminate(self, proc):
        """Killing the `docker run` client leaves the container running, so the
        container is killed through the daemon first."""
        if self.container_name is not None:
            killer = await create_subprocess_exec(
                self.docker, "kill", self.container_name,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await killer.wait()
            log.debug("killed container `%s`", self.container_name)
        await super().terminate(proc)


@dataclass
class SshRunner(CommandRunner):
    """Run commands on a remote host. The staging directory is synchronised to
    `remote_root/<staging dir name>` with rsync before the run and back after
    it. The container image is ignored."""
    name: ClassVar[str] = "ssh"
    host: str = "localhost"
    remote_root: str = "/tmp/rtask"
    ssh_options: list[str] = field(default_factory=lambda: list(SSH_OPTS))

    @property
    def remote_dir(self) -> str:
        return str(PurePosixPath(self.remote_root, self.staging_dir.resolve().name))

    def ssh_args(self, inner: str) -> list[str]:
        return ["ssh", *self.ssh_options, self.host, inner]

    def rsync_args(self, src: str, dst: str) -> list[str]:
        return ["rsync", "-az", "-e", shlex.join(["ssh", *self.ssh_options]), src, dst]

    def resolve_absolute_path(self, relative_path: str, target_os: TargetOS) -> str:
        return str(pure_path(target_os, self.remote_dir, relative_path))

    def command_line(self, shell, container_image, env, target_os):
        exports = shlex.join(["env", *(f"{k}={v}" for k, v in env.items())])
        inner = f"cd {shlex.quote(self.remote_dir)} && {exports} {shlex.join(shell)}"
        return self.ssh_args(inner)

    async def _transfer(self, argv: list[str], what: str) -> None:
        code, _, stderr = await self.spawn(argv)
        if code != 0:
            log.error("%s to `%s` failed", what, self.host)
            raise ExecutionError(code, "", stderr)

    async def upload(self):
        await self._transfer(
            self.ssh_args(f"mkdir -p {shlex.quote(self.remote_dir)}"), "mkdir"
        )
        await self._transfer(
            self.rsync_args(f"{self.staging_dir.resolve()}/", f"{self.host}:{self.remote_dir}/"),
            "upload",
        )

    async def download(self):
        await self._transfer(
            self.rsync_args(f"{self.host}:{self.remote_dir}/", f"{self.staging_dir.resolve()}/"),
            "download",
        )


RUNNERS: dict[str, type[CommandRunner]] = {
    r.name: r for r in (LocalRunner, DockerRunner, SshRunner)
}

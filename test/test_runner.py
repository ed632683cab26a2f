from dataclasses import dataclass, field
from pathlib import Path
import pytest
from rtask.config import TargetOS
from rtask.errors import ConfigError, ExecutionError
from rtask.result import State
from rtask.runner import (
    RUNNERS, DockerRunner, LocalRunner, SshRunner, shell_command
)


def test_shell_command():
    assert shell_command(["a", "b"], TargetOS.LINUX) == ["/bin/sh", "-c", "set -e\na\nb"]
    assert shell_command(["a", "b"], TargetOS.LINUX, fail_fast=False) == ["/bin/sh", "-c", "a\nb"]
    assert shell_command(["a", "b"], TargetOS.WINDOWS) == ["cmd", "/c", "a && b"]
    assert shell_command(["a", "b"], TargetOS.WINDOWS, fail_fast=False) == ["cmd", "/c", "a & b"]


def test_runner_registry():
    assert RUNNERS == {"local": LocalRunner, "docker": DockerRunner, "ssh": SshRunner}


def test_local_paths(tmp_path):
    runner = LocalRunner(tmp_path)
    assert runner.resolve_absolute_path("s.R", TargetOS.LINUX) == str(tmp_path.resolve() / "s.R")
    assert "\\" in runner.resolve_absolute_path("s.R", TargetOS.WINDOWS)


def test_docker_paths(tmp_path):
    assert DockerRunner(tmp_path).resolve_absolute_path("s.R", TargetOS.LINUX) == "/app/s.R"
    assert DockerRunner(tmp_path).resolve_absolute_path("s.R", TargetOS.WINDOWS) == "C:\\app\\s.R"
    assert DockerRunner(tmp_path, mount_point="/data").resolve_absolute_path(
        "sub/s.R", TargetOS.LINUX) == "/data/sub/s.R"


def test_docker_command_line(tmp_path):
    runner = DockerRunner(tmp_path)
    argv = runner.command_line(
        ["/bin/sh", "-c", "Rscript /app/s.R"], "r-base", {"A": "1"}, TargetOS.LINUX
    )
    assert runner.container_name is not None
    assert runner.container_name.startswith("rtask-")
    assert argv == [
        "docker", "run", "--rm", "--name", runner.container_name, "--pull=missing",
        "-v", f"{tmp_path.resolve()}:/app", "-w", "/app",
        "-e", "A=1",
        "r-base", "/bin/sh", "-c", "Rscript /app/s.R",
    ]


def test_ssh_command_line(tmp_path):
    staging = tmp_path / "run-1"
    runner = SshRunner(staging, host="hpc", remote_root="/scratch/rtask")
    assert runner.remote_dir == "/scratch/rtask/run-1"
    assert runner.resolve_absolute_path("s.R", TargetOS.LINUX) == "/scratch/rtask/run-1/s.R"
    argv = runner.command_line(["/bin/sh", "-c", "Rscript s.R"], "r-base", {"A": "1"}, TargetOS.LINUX)
    assert argv[0] == "ssh"
    assert argv[-2] == "hpc"
    assert argv[-1] == "cd /scratch/rtask/run-1 && env A=1 /bin/sh -c 'Rscript s.R'"
    assert runner.rsync_args("a/", "b/")[:3] == ["rsync", "-az", "-e"]


def test_stage_inputs(tmp_path):
    source = tmp_path / "source.csv"
    source.write_text("x\n1\n")
    staging = tmp_path / "staging"
    runner = LocalRunner(staging)
    runner.stage_inputs({"data/a.csv": "a\n", "b.csv": source})
    assert (staging / "data" / "a.csv").read_text() == "a\n"
    assert (staging / "b.csv").read_text() == "x\n1\n"


def test_stage_inputs_outside(tmp_path):
    runner = LocalRunner(tmp_path / "staging")
    with pytest.raises(ConfigError):
        runner.stage_inputs({"../escape.txt": "x"})


def test_collect_outputs(tmp_path):
    (tmp_path / "a.csv").write_text("a")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "b.csv").write_text("b")
    (tmp_path / "c.parquet").write_text("c")
    runner = LocalRunner(tmp_path)
    assert list(runner.collect_outputs(["*.csv"])) == ["a.csv"]
    assert set(runner.collect_outputs(["**/*.csv", "*.parquet"])) == {"a.csv", "sub/b.csv", "c.parquet"}
    with pytest.raises(ConfigError):
        runner.collect_outputs(["/etc/*"])


@pytest.mark.asyncio
async def test_local_run(tmp_path):
    runner = LocalRunner(tmp_path)
    result = await runner.run(
        ["echo $GREETING", "echo oops >&2"], {}, [], "r-base",
        env={"GREETING": "hello"}, warning_on_std_err=False,
    )
    assert result.exit_code == 0
    assert result.stdout == "hello\n"
    assert result.stderr == "oops\n"
    assert result.state is State.SUCCESS
    assert result.elapsed is not None


@pytest.mark.asyncio
async def test_local_fail_fast(tmp_path):
    runner = LocalRunner(tmp_path)
    result = await runner.run(["false", "echo after"], {}, [], "r-base")
    assert result.exit_code != 0
    assert result.stdout == ""
    assert result.state is State.FAILED

    result = await runner.run(["false", "echo after"], {}, [], "r-base", fail_fast=False)
    assert result.exit_code == 0
    assert result.stdout == "after\n"


@pytest.mark.asyncio
async def test_local_timeout(tmp_path):
    runner = LocalRunner(tmp_path, timeout=0.2)
    with pytest.raises(TimeoutError):
        await runner.run(["sleep 10"], {}, [], "r-base")


def test_docker_container_names_are_unique(tmp_path):
    runner = DockerRunner(tmp_path)
    runner.command_line(["true"], "r-base", {}, TargetOS.LINUX)
    first = runner.container_name
    runner.command_line(["true"], "r-base", {}, TargetOS.LINUX)
    assert runner.container_name != first


def test_collect_outputs_stays_in_staging(tmp_path):
    (tmp_path / "secret.txt").write_text("s")
    staging = tmp_path / "staging"
    staging.mkdir()
    (staging / "out.csv").write_text("o")
    runner = LocalRunner(staging)
    assert list(runner.collect_outputs(["../*", "*.csv"])) == ["out.csv"]


def test_stage_inputs_utf8(tmp_path):
    runner = LocalRunner(tmp_path)
    runner.stage_inputs({"labels.csv": "name\nGrüße\n"})
    assert (tmp_path / "labels.csv").read_bytes() == "name\nGrüße\n".encode("utf-8")


@dataclass
class RecordingDockerRunner(DockerRunner):
    calls: list[list[str]] = field(default_factory=list)

    async def spawn(self, argv, env=None, cwd=None):
        self.calls.append(argv)
        return 0, "[1] 2\n", ""


@pytest.mark.asyncio
async def test_docker_run(tmp_path):
    runner = RecordingDockerRunner(tmp_path)
    result = await runner.run(
        ["Rscript /app/s.R"], {"s.R": "print(1+1)"}, [], "r-base", env={"A": "1"}
    )
    argv, = runner.calls
    assert argv[:5] == ["docker", "run", "--rm", "--name", runner.container_name]
    assert argv[argv.index("-e") + 1] == "A=1"
    assert argv[-4:] == ["r-base", "/bin/sh", "-c", "set -e\nRscript /app/s.R"]
    assert (tmp_path / "s.R").read_text() == "print(1+1)"
    assert result.stdout == "[1] 2\n"
    assert result.state is State.SUCCESS


@pytest.mark.asyncio
async def test_docker_timeout_kills_container(tmp_path):
    killed = tmp_path / "killed.txt"
    fake_docker = tmp_path / "docker"
    fake_docker.write_text(
        "#!/bin/sh\n"
        f'if [ "$1" = kill ]; then echo "$2" > {killed}; exit 0; fi\n'
        "exec sleep 10\n"
    )
    fake_docker.chmod(0o755)
    runner = DockerRunner(tmp_path / "staging", timeout=0.5, docker=str(fake_docker))
    with pytest.raises(TimeoutError):
        await runner.run(["Rscript /app/s.R"], {}, [], "r-base")
    assert killed.read_text().strip() == runner.container_name


@dataclass
class RecordingSshRunner(SshRunner):
    fail_at: int | None = None
    calls: list[list[str]] = field(default_factory=list)

    async def spawn(self, argv, env=None, cwd=None):
        self.calls.append(argv)
        if len(self.calls) - 1 == self.fail_at:
            return 255, "", "Connection refused\n"
        return 0, "done\n", ""


@pytest.mark.asyncio
async def test_ssh_run(tmp_path):
    staging = tmp_path / "run-1"
    runner = RecordingSshRunner(staging, host="hpc", remote_root="/scratch")
    result = await runner.run(["Rscript /scratch/run-1/s.R"], {"s.R": "print(1)"}, [], "r-base")
    assert [argv[0] for argv in runner.calls] == ["ssh", "rsync", "ssh", "rsync"]
    assert runner.calls[0][-1] == "mkdir -p /scratch/run-1"
    assert runner.calls[1][-2:] == [f"{staging.resolve()}/", "hpc:/scratch/run-1/"]
    assert runner.calls[2][-1].startswith("cd /scratch/run-1 && env /bin/sh -c")
    assert runner.calls[3][-2:] == ["hpc:/scratch/run-1/", f"{staging.resolve()}/"]
    assert result.stdout == "done\n"
    assert (staging / "s.R").read_text() == "print(1)"


@pytest.mark.asyncio
@pytest.mark.parametrize("fail_at", [0, 1, 3])
async def test_ssh_transfer_failure(tmp_path, fail_at):
    runner = RecordingSshRunner(tmp_path / "run-1", host="hpc", fail_at=fail_at)
    with pytest.raises(ExecutionError) as exc:
        await runner.run(["true"], {}, [], "r-base")
    assert exc.value.exit_code == 255
    assert exc.value.stderr == "Connection refused\n"
    assert len(runner.calls) == fail_at + 1

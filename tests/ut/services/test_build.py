"""构建执行器与构建子进程测试

这些用例真实启动 `python -m cellar.services.build.worker` 子进程。
"""

from __future__ import annotations

import signal
import subprocess
import tarfile
from pathlib import Path

import pytest

from cellar.core.exceptions import BuildError, ExecutionError
from cellar.core.models import Formula
from cellar.services.build import BuildExecutor, BuildRequest
from cellar.services.build.executor import ERROR_PIPE_ENV
from cellar.services.build.worker import FormulaBuild, error_payload, render_step, step_slug


@pytest.fixture()
def executor(config) -> BuildExecutor:
    return BuildExecutor(
        build_path=config.build_path,
        logs_dir=Path(config.logs_dir),
        build_tmp=config.build_tmp,
    )


@pytest.fixture()
def build(executor, repository, store):
    def _build(name: str, **kw):
        formula = repository.load(name)
        request = BuildRequest(formula=formula, prefix=store.keg_path(formula), **kw)
        return formula, request, executor.build(request)
    return _build


class TestWorkerHelpers:
    def test_render_step_keeps_shell_variables(self):
        out = render_step("make PREFIX={prefix} ${CC}", {"prefix": "/p", "name": "", "version": "", "source": ""})
        assert out == "make PREFIX=/p ${CC}"

    def test_step_slug(self):
        assert step_slug("/usr/bin/make install") == "make"
        assert step_slug("./configure --prefix=/x") == "configure"
        assert step_slug("   ") == "step"

    def test_steps_filtered_by_option(self, tmp_path):
        f = Formula(name="foo", version="1", build_steps=[
            "make", {"run": "make docs", "if_option": "with-docs"},
        ])
        plain = FormulaBuild(f, prefix=tmp_path, logs_dir=tmp_path)
        docs = FormulaBuild(f, prefix=tmp_path, logs_dir=tmp_path, options=("--with-docs",))
        assert plain.steps() == ["make"]
        assert docs.steps() == ["make", "make docs"]

    def test_error_payload_keeps_kind_and_fields(self):
        payload = error_payload(ExecutionError("步骤 1失败", cmd="false", returncode=1))
        assert payload["status"] == "error"
        assert payload["kind"] == "ExecutionError"
        assert payload["fields"]["cmd"] == "false"
        assert payload["fields"]["code"] == "EXECUTION_ERROR"

    def test_error_payload_for_plain_exception(self):
        payload = error_payload(RuntimeError("boom"))
        assert payload["kind"] == "RuntimeError"
        assert payload["fields"] == {}


class TestBuildExecutor:
    def test_successful_build_writes_keg_and_logs(self, build, write_formula, store):
        write_formula("foo")
        formula, request, logs = build("foo")
        assert (request.prefix / "bin" / "foo").is_file()
        assert [p.name for p in logs] == ["01.mkdir.log"]

    def test_source_tarball_is_staged(self, build, write_formula, tmp_path):
        src_dir = tmp_path / "src" / "foo-1.0"
        src_dir.mkdir(parents=True)
        (src_dir / "data.txt").write_text("hello")
        tarball = tmp_path / "foo-1.0.tar.gz"
        with tarfile.open(tarball, "w:gz") as tar:
            tar.add(src_dir, arcname="foo-1.0")
        write_formula("foo", build=["mkdir -p {prefix}/share && cp data.txt {prefix}/share/data.txt"])
        _, request, _ = build("foo", source=tarball)
        assert (request.prefix / "share" / "data.txt").read_text() == "hello"

    def test_failing_step_reports_structured_error(self, build, write_formula, store):
        write_formula("foo", build=["mkdir -p {prefix}/bin", "echo broken >&2; exit 2"])
        with pytest.raises(BuildError) as exc:
            build("foo")
        err = exc.value
        assert err.kind == "ExecutionError"
        assert err.fields["returncode"] == 2
        assert any(log.endswith("02.echo.log") for log in err.logs)
        assert not store.rack("foo").exists()

    def test_empty_installation_is_rejected(self, build, write_formula, store):
        write_formula("foo", build=["true"])
        with pytest.raises(BuildError) as exc:
            build("foo")
        assert exc.value.kind == "EmptyInstallation"
        assert not store.rack("foo").exists()

    def test_environment_is_minimal(self, build, write_formula, monkeypatch, config):
        monkeypatch.setenv("CELLAR_LEAKED", "1")
        write_formula("foo", build=["mkdir -p {prefix} && env > {prefix}/env.txt"])
        _, request, _ = build("foo")
        env = (request.prefix / "env.txt").read_text()
        assert "CELLAR_LEAKED" not in env
        assert f"PATH={config.build_path}" in env
        assert ERROR_PIPE_ENV not in env

    def test_extra_env_is_passed(self, build, write_formula):
        write_formula("foo", build=["mkdir -p {prefix} && echo $FOO_FLAG > {prefix}/flag"])
        _, request, _ = build("foo", extra_env={"FOO_FLAG": "on"})
        assert (request.prefix / "flag").read_text().strip() == "on"

    def test_options_reach_worker(self, build, write_formula):
        write_formula("foo", options=["with-docs"], build=[
            "mkdir -p {prefix}/bin && touch {prefix}/bin/foo",
            {"run": "mkdir -p {prefix}/share/doc", "if_option": "with-docs"},
        ])
        _, request, _ = build("foo", options=("--with-docs",))
        assert (request.prefix / "share" / "doc").is_dir()

    def test_formula_without_file_cannot_build(self, executor, tmp_path):
        request = BuildRequest(formula=Formula(name="foo", version="1"), prefix=tmp_path / "k")
        with pytest.raises(BuildError, match="定义文件"):
            executor.build(request)

    def test_interrupted_exit_code_is_reraised(self, executor, tmp_path):
        request = BuildRequest(formula=Formula(name="foo", version="1"), prefix=tmp_path)
        with pytest.raises(KeyboardInterrupt):
            executor._check(request, 130, b"", tmp_path)

    def test_abnormal_exit_without_result(self, executor, tmp_path):
        request = BuildRequest(formula=Formula(name="foo", version="1"), prefix=tmp_path)
        with pytest.raises(BuildError, match="rc=9"):
            executor._check(request, 9, b"", tmp_path)

    def test_garbage_result_is_rejected(self, executor):
        with pytest.raises(BuildError, match="无法解析"):
            executor._decode("foo", b"not json", [])

    def test_cleanup_removes_empty_rack(self, tmp_path):
        keg = tmp_path / "Cellar" / "foo" / "1.0"
        (keg / "bin").mkdir(parents=True)
        BuildExecutor.cleanup(keg)
        assert not (tmp_path / "Cellar" / "foo").exists()

    def test_parent_interrupt_stops_worker_and_cleans_keg(
        self, executor, repository, store, write_formula, monkeypatch,
    ):
        write_formula("foo", build=["mkdir -p {prefix}/bin && touch {prefix}/bin/foo && sleep 30"])
        formula = repository.load("foo")
        request = BuildRequest(formula=formula, prefix=store.keg_path(formula))
        marker = request.prefix / "bin" / "foo"
        workers: list[subprocess.Popen] = []
        forward = BuildExecutor._interrupt

        def record(self, proc):
            workers.append(proc)
            forward(self, proc)

        def on_tick(signum, frame):
            # 构建步骤已开始写 keg 后模拟 Ctrl-C
            if marker.exists():
                signal.setitimer(signal.ITIMER_REAL, 0)
                raise KeyboardInterrupt

        monkeypatch.setattr(BuildExecutor, "_interrupt", record)
        previous = signal.signal(signal.SIGALRM, on_tick)
        signal.setitimer(signal.ITIMER_REAL, 0.1, 0.1)
        try:
            with pytest.raises(KeyboardInterrupt):
                executor.build(request)
        finally:
            signal.setitimer(signal.ITIMER_REAL, 0)
            signal.signal(signal.SIGALRM, previous)

        assert len(workers) == 1
        assert workers[0].returncode is not None
        assert not request.prefix.exists()
        assert not store.rack("foo").exists()

    def test_unresponsive_worker_is_killed(self, config):
        executor = BuildExecutor(
            build_path=config.build_path, logs_dir=Path(config.logs_dir), interrupt_timeout=0.5,
        )
        proc = subprocess.Popen(
            ["/bin/sh", "-c", "trap '' INT; echo ready; sleep 30"],
            stdout=subprocess.PIPE, text=True,
        )
        assert proc.stdout.readline().strip() == "ready"
        executor._interrupt(proc)
        proc.stdout.close()
        assert proc.returncode == -signal.SIGKILL

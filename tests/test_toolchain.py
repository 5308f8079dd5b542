"""Tests for crossbake.toolchain (model, provisioner, installers)."""

import io
import os
import subprocess
import tarfile
import threading
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

TARGET = "x86_64-unknown-linux-musl"


def _script_installer(output: str, calls: list | None = None, binary: str = "bin/tool"):
    """Installer writing an executable that prints output."""

    def install(spec, dest: Path, target: str) -> str:
        if calls is not None:
            calls.append((spec.name, target))
        exe = dest / binary
        exe.parent.mkdir(parents=True, exist_ok=True)
        exe.write_text(f"#!/bin/sh\necho '{output}'\n")
        exe.chmod(0o755)
        return binary

    return install


def _spec(name: str = "protocol-compiler", version: str = "25.1", **extra):
    from crossbake.toolchain import ComponentSpec

    return ComponentSpec.from_dict({"name": name, "version": version, "installer": "archive", **extra})


class TestComponentSpec:
    def test_defaults(self) -> None:
        spec = _spec()
        assert spec.version_args == ("--version",)
        assert spec.env == {}

    def test_unknown_installer(self) -> None:
        from crossbake.errors import ConfigError

        with pytest.raises(ConfigError, match="Unknown installer"):
            _spec(installer="brew")

    def test_missing_version(self) -> None:
        from crossbake.errors import ConfigError
        from crossbake.toolchain import ComponentSpec

        with pytest.raises(ConfigError, match="version"):
            ComponentSpec.from_dict({"name": "linker"})

    def test_bad_env_binding(self) -> None:
        from crossbake.errors import ConfigError

        with pytest.raises(ConfigError, match="PROTOC"):
            _spec(env={"PROTOC": "somewhere"})

    def test_unquoted_float_version(self) -> None:
        from crossbake.errors import ConfigError
        from crossbake.toolchain import ComponentSpec

        with pytest.raises(ConfigError, match="must be a string"):
            ComponentSpec.from_dict({"name": "codegen-backend", "version": 18.10})


class TestToolchainEnvironment:
    def test_bindings_and_path(self, tmp_path: Path) -> None:
        from crossbake.toolchain import ToolchainComponent, ToolchainEnvironment

        comp = ToolchainComponent(
            name="codegen-backend",
            version="18",
            path=tmp_path / "llvm",
            binary=tmp_path / "llvm" / "bin" / "llvm-config",
            env={"LLVM_SYS_181_PREFIX": "path", "LLVM_CONFIG": "binary"},
        )
        env = ToolchainEnvironment(TARGET, {"codegen-backend": comp}).as_env()
        assert env["CROSSBAKE_CODEGEN_BACKEND"] == str(tmp_path / "llvm")
        assert env["CROSSBAKE_CODEGEN_BACKEND_BIN"] == str(comp.binary)
        assert env["LLVM_SYS_181_PREFIX"] == str(tmp_path / "llvm")
        assert env["LLVM_CONFIG"] == str(comp.binary)
        assert env["PATH"].split(os.pathsep)[0] == str(tmp_path / "llvm" / "bin")

    def test_is_read_only(self, tmp_path: Path) -> None:
        from crossbake.toolchain import ToolchainEnvironment

        env = ToolchainEnvironment(TARGET, {})
        with pytest.raises(TypeError):
            env["x"] = None  # type: ignore[index]

    def test_ensure_executable(self, tmp_path: Path) -> None:
        from crossbake.errors import ProvisioningError
        from crossbake.toolchain import ToolchainComponent, ToolchainEnvironment

        comp = ToolchainComponent(name="linker", version="0.13.0", path=tmp_path, binary=tmp_path / "zig")
        env = ToolchainEnvironment(TARGET, {"linker": comp})
        with pytest.raises(ProvisioningError) as exc:
            env.ensure_executable()
        assert exc.value.context["component"] == "linker"

    def test_digest_is_deterministic(self, tmp_path: Path) -> None:
        from crossbake.toolchain import ToolchainComponent, ToolchainEnvironment

        a = ToolchainComponent(name="a", version="1", path=tmp_path / "a", binary=tmp_path / "a" / "a")
        b = ToolchainComponent(name="b", version="2", path=tmp_path / "b", binary=tmp_path / "b" / "b")
        one = ToolchainEnvironment(TARGET, {"a": a, "b": b})
        two = ToolchainEnvironment(TARGET, {"b": b, "a": a})
        assert one.digest() == two.digest()
        assert one.digest() != ToolchainEnvironment("aarch64-unknown-linux-musl", {"a": a}).digest()


class TestVersionMatches:
    @pytest.mark.parametrize(
        ("output", "version", "expected"),
        [
            ("libprotoc 25.1", "25.1", True),
            ("rustc 1.80.0 (051478957 2024-07-21)", "1.80.0", True),
            ("rustc 1.80.1 (3f5fd8dd4 2024-08-06)", "1.80.0", False),
            ("Ubuntu LLVM version 18.1.8", "18", True),
            ("LLVM version 181.0", "18", False),
            ("libprotoc 25.10", "25.1", False),
        ],
    )
    def test_tokens(self, output: str, version: str, expected: bool) -> None:
        from crossbake.toolchain import version_matches

        assert version_matches(output, version) is expected


class TestProvision:
    def test_installs_and_binds(self, tmp_path: Path) -> None:
        from crossbake.toolchain import provision

        spec = _spec(binary="bin/protoc", env={"PROTOC": "binary"})
        installers = {"archive": _script_installer("libprotoc 25.1", binary="bin/protoc")}
        env = provision([spec], TARGET, tmp_path, installers=installers)
        comp = env["protocol-compiler"]
        assert comp.path == (tmp_path / "protocol-compiler" / "25.1").resolve()
        assert comp.binary == comp.path / "bin" / "protoc"
        assert env.as_env()["PROTOC"] == str(comp.binary)
        assert (comp.path / ".crossbake-installed").is_file()

    def test_idempotent(self, tmp_path: Path) -> None:
        from crossbake.toolchain import provision

        calls: list = []
        spec = _spec(binary="bin/tool")
        installers = {"archive": _script_installer("tool 25.1", calls)}
        first = provision([spec], TARGET, tmp_path, installers=installers)
        second = provision([spec], TARGET, tmp_path, installers=installers)
        assert len(calls) == 1
        assert first.describe() == second.describe()
        assert first.digest() == second.digest()

    def test_version_mismatch(self, tmp_path: Path) -> None:
        from crossbake.errors import VersionMismatchError
        from crossbake.toolchain import provision

        spec = _spec(binary="bin/tool")
        installers = {"archive": _script_installer("libprotoc 24.4")}
        with pytest.raises(VersionMismatchError) as exc:
            provision([spec], TARGET, tmp_path, installers=installers)
        assert exc.value.context["component"] == "protocol-compiler"
        assert "24.4" in exc.value.message

    def test_missing_binary(self, tmp_path: Path) -> None:
        from crossbake.errors import ProvisioningError
        from crossbake.toolchain import provision

        def install(spec, dest: Path, target: str) -> str:
            return "bin/absent"

        with pytest.raises(ProvisioningError, match="not executable"):
            provision([_spec()], TARGET, tmp_path, installers={"archive": install})

    def test_failed_install_leaves_no_install_dir(self, tmp_path: Path) -> None:
        from crossbake.errors import ProvisioningError
        from crossbake.toolchain import provision

        def install(spec, dest: Path, target: str) -> str:
            (dest / "partial").write_text("x")
            raise ProvisioningError("download failed", context={"component": spec.name})

        with pytest.raises(ProvisioningError):
            provision([_spec()], TARGET, tmp_path, installers={"archive": install})
        assert list((tmp_path / "protocol-compiler").iterdir()) == []

    def test_unmarked_install_dir_is_an_error(self, tmp_path: Path) -> None:
        from crossbake.errors import ProvisioningError
        from crossbake.toolchain import provision

        (tmp_path / "protocol-compiler" / "25.1").mkdir(parents=True)
        with pytest.raises(ProvisioningError, match="completion marker"):
            provision([_spec()], TARGET, tmp_path, installers={"archive": _script_installer("25.1")})

    def test_second_target_added_to_existing_install(self, tmp_path: Path) -> None:
        import json

        from crossbake.toolchain import provision

        installed: list = []
        added: list = []
        spec = _spec("compiler", "1.80.0", installer="rustup", binary="bin/rustc")
        installers = {"rustup": _script_installer("rustc 1.80.0", installed, binary="bin/rustc")}
        adders = {"rustup": lambda spec, path, target: added.append((spec.name, path, target))}
        arm = "aarch64-unknown-linux-musl"

        provision([spec], TARGET, tmp_path, installers=installers, target_adders=adders)
        env = provision([spec], arm, tmp_path, installers=installers, target_adders=adders)
        provision([spec], arm, tmp_path, installers=installers, target_adders=adders)

        final = env["compiler"].path
        assert installed == [("compiler", TARGET)]
        assert added == [("compiler", final, arm)]
        marker = json.loads((final / ".crossbake-installed").read_text())
        assert marker["targets"] == [arm, TARGET]

    def test_target_independent_install_is_not_touched(self, tmp_path: Path) -> None:
        from crossbake.toolchain import provision

        added: list = []
        installers = {"archive": _script_installer("tool 25.1")}
        adders = {"rustup": lambda spec, path, target: added.append(target)}
        provision([_spec()], TARGET, tmp_path, installers=installers, target_adders=adders)
        arm = "aarch64-unknown-linux-musl"
        provision([_spec()], arm, tmp_path, installers=installers, target_adders=adders)
        assert added == []

    def test_duplicate_components(self, tmp_path: Path) -> None:
        from crossbake.errors import ConfigError
        from crossbake.toolchain import provision

        with pytest.raises(ConfigError, match="Duplicate"):
            provision([_spec(), _spec()], TARGET, tmp_path)

    def test_concurrent_installs_joined_first_error_in_order(self, tmp_path: Path) -> None:
        from crossbake.errors import ProvisioningError
        from crossbake.toolchain import ComponentSpec, provision

        started = threading.Barrier(3, timeout=5)
        finished: list[str] = []

        def install(spec, dest: Path, target: str) -> str:
            started.wait()
            if spec.name in ("linker", "compiler"):
                raise ProvisioningError(f"{spec.name} broke", context={"component": spec.name})
            exe = dest / "bin" / "tool"
            exe.parent.mkdir(parents=True)
            exe.write_text(f"#!/bin/sh\necho {spec.version}\n")
            exe.chmod(0o755)
            finished.append(spec.name)
            return "bin/tool"

        specs = [
            ComponentSpec(name=n, version="1.0", installer="archive", binary="bin/tool")
            for n in ("protocol-compiler", "linker", "compiler")
        ]
        with pytest.raises(ProvisioningError) as exc:
            provision(specs, TARGET, tmp_path, installers={"archive": install})
        # all three ran concurrently (barrier) and the healthy one completed
        assert finished == ["protocol-compiler"]
        assert exc.value.context["component"] == "linker"

    def test_empty_component_list(self, tmp_path: Path) -> None:
        from crossbake.toolchain import provision

        env = provision([], TARGET, tmp_path / "root")
        assert len(env) == 0
        assert (tmp_path / "root").is_dir()


class TestInstallers:
    def test_cargo_install_command(self, tmp_path: Path) -> None:
        from crossbake.toolchain import ComponentSpec
        from crossbake.toolchain.installers import install_cargo

        spec = ComponentSpec(name="cargo-chef", version="0.1.67", installer="cargo")
        with (
            patch("crossbake.toolchain.installers.shutil.which", return_value="/usr/bin/cargo"),
            patch("crossbake.helpers.subprocess.run") as m_run,
        ):
            m_run.return_value = subprocess.CompletedProcess([], 0, "", "")
            rel = install_cargo(spec, tmp_path, TARGET)
        (cmd,) = m_run.call_args[0]
        assert cmd == [
            "/usr/bin/cargo",
            "install",
            "--locked",
            "--root",
            str(tmp_path),
            "--version",
            "0.1.67",
            "cargo-chef",
        ]
        assert rel == "bin/cargo-chef"

    def test_cargo_missing(self, tmp_path: Path) -> None:
        from crossbake.errors import ProvisioningError
        from crossbake.toolchain import ComponentSpec
        from crossbake.toolchain.installers import install_cargo

        spec = ComponentSpec(name="cargo-chef", version="0.1.67", installer="cargo")
        with patch("crossbake.toolchain.installers.shutil.which", return_value=None):
            with pytest.raises(ProvisioningError, match="cargo not found"):
                install_cargo(spec, tmp_path, TARGET)

    def test_install_command_failure_names_component(self, tmp_path: Path) -> None:
        from crossbake.errors import ProvisioningError
        from crossbake.toolchain import ComponentSpec
        from crossbake.toolchain.installers import install_pip

        spec = ComponentSpec(
            name="linker", version="0.13.0", installer="pip", binary="ziglang/zig", source={"package": "ziglang"}
        )
        with patch("crossbake.helpers.subprocess.run") as m_run:
            m_run.return_value = subprocess.CompletedProcess([], 1, "", "No matching distribution")
            with pytest.raises(ProvisioningError, match="No matching distribution") as exc:
                install_pip(spec, tmp_path, TARGET)
        assert exc.value.context["component"] == "linker"
        (cmd,) = m_run.call_args[0]
        assert cmd[-1] == "ziglang==0.13.0"
        assert "--target" in cmd

    def test_rustup_install_resolves_binary(self, tmp_path: Path) -> None:
        from crossbake.toolchain import ComponentSpec
        from crossbake.toolchain.installers import extra_env_for, install_rustup

        spec = ComponentSpec(name="compiler", version="1.80.0", installer="rustup", binary="rustc")
        rustc = tmp_path / "rustup" / "toolchains" / "1.80.0-x86_64-unknown-linux-gnu" / "bin" / "rustc"
        outputs = [
            subprocess.CompletedProcess([], 0, "", ""),
            subprocess.CompletedProcess([], 0, f"{rustc}\n", ""),
        ]
        with (
            patch("crossbake.toolchain.installers.shutil.which", return_value="/usr/bin/rustup"),
            patch("crossbake.helpers.subprocess.run", side_effect=outputs) as m_run,
        ):
            rel = install_rustup(spec, tmp_path, TARGET)
        assert rel == "rustup/toolchains/1.80.0-x86_64-unknown-linux-gnu/bin/rustc"
        install_cmd = m_run.call_args_list[0][0][0]
        assert install_cmd[1:4] == ["toolchain", "install", "1.80.0"]
        assert install_cmd[install_cmd.index("--target") + 1] == TARGET
        env = m_run.call_args_list[0][1]["env"]
        assert env["RUSTUP_HOME"] == str(tmp_path / "rustup")
        assert extra_env_for(spec, tmp_path)["RUSTUP_TOOLCHAIN"] == "1.80.0"

    def test_rustup_target_add(self, tmp_path: Path) -> None:
        from crossbake.toolchain import ComponentSpec
        from crossbake.toolchain.installers import add_rustup_target

        spec = ComponentSpec(name="compiler", version="1.80.0", installer="rustup", binary="rustc")
        with (
            patch("crossbake.toolchain.installers.shutil.which", return_value="/usr/bin/rustup"),
            patch(
                "crossbake.helpers.subprocess.run",
                return_value=subprocess.CompletedProcess([], 0, "", ""),
            ) as m_run,
        ):
            add_rustup_target(spec, tmp_path, "aarch64-unknown-linux-musl")
        cmd = m_run.call_args[0][0]
        assert cmd == [
            "/usr/bin/rustup",
            "target",
            "add",
            "aarch64-unknown-linux-musl",
            "--toolchain",
            "1.80.0",
        ]
        assert m_run.call_args[1]["env"]["RUSTUP_HOME"] == str(tmp_path / "rustup")

    def test_system_prefix_symlinked(self, tmp_path: Path) -> None:
        from crossbake.toolchain import ComponentSpec
        from crossbake.toolchain.installers import install_system

        prefix = tmp_path / "llvm-18"
        (prefix / "bin").mkdir(parents=True)
        (prefix / "bin" / "llvm-config").write_text("#!/bin/sh\necho 18.1.8\n")
        spec = ComponentSpec(
            name="codegen-backend",
            version="18",
            installer="system",
            binary="bin/llvm-config",
            source={"prefix": str(tmp_path / "llvm-{version}")},
        )
        dest = tmp_path / "dest"
        assert install_system(spec, dest, TARGET) == "bin/llvm-config"
        assert (dest / "bin").is_symlink()
        assert (dest / "bin" / "llvm-config").read_text().startswith("#!/bin/sh")

    def test_system_prefix_missing(self, tmp_path: Path) -> None:
        from crossbake.errors import ProvisioningError
        from crossbake.toolchain import ComponentSpec
        from crossbake.toolchain.installers import install_system

        spec = ComponentSpec(
            name="codegen-backend", version="18", installer="system", source={"prefix": str(tmp_path / "none")}
        )
        with pytest.raises(ProvisioningError, match="System prefix not found"):
            install_system(spec, tmp_path / "dest", TARGET)

    def test_archive_zip_extract_checks_sha256(self, tmp_path: Path) -> None:
        import hashlib

        from crossbake.errors import ProvisioningError
        from crossbake.toolchain import ComponentSpec
        from crossbake.toolchain.installers import install_archive

        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            zf.writestr("bin/protoc", "#!/bin/sh\necho libprotoc 25.1\n")
            zf.writestr("../evil", "nope")
        payload = buf.getvalue()

        def fake_download(spec, url: str, dest: Path) -> None:
            dest.write_bytes(payload)

        good = ComponentSpec(
            name="protocol-compiler",
            version="25.1",
            installer="archive",
            binary="bin/protoc",
            source={"url": "https://example.com/protoc-{version}.zip", "sha256": hashlib.sha256(payload).hexdigest()},
        )
        dest = tmp_path / "dest"
        dest.mkdir()
        with patch("crossbake.toolchain.installers._download", side_effect=fake_download):
            assert install_archive(good, dest, TARGET) == "bin/protoc"
        assert os.access(dest / "bin" / "protoc", os.X_OK)
        assert not (tmp_path / "evil").exists()

        bad = ComponentSpec(
            name="protocol-compiler",
            version="25.1",
            installer="archive",
            binary="bin/protoc",
            source={"url": "https://example.com/protoc-{version}.zip", "sha256": "0" * 64},
        )
        with patch("crossbake.toolchain.installers._download", side_effect=fake_download):
            with pytest.raises(ProvisioningError, match="sha256 mismatch"):
                install_archive(bad, tmp_path / "dest2", TARGET)

    def test_archive_tar_extract(self, tmp_path: Path) -> None:
        from crossbake.toolchain import ComponentSpec
        from crossbake.toolchain.installers import install_archive

        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tf:
            data = b"#!/bin/sh\necho tool 2.0\n"
            info = tarfile.TarInfo("tool-2.0/bin/tool")
            info.size = len(data)
            info.mode = 0o755
            tf.addfile(info, io.BytesIO(data))
        payload = buf.getvalue()

        def fake_download(spec, url: str, dest: Path) -> None:
            dest.write_bytes(payload)

        spec = ComponentSpec(
            name="tool",
            version="2.0",
            installer="archive",
            binary="tool-2.0/bin/tool",
            source={"url": "https://example.com/tool-{version}-{target}.tar.gz"},
        )
        dest = tmp_path / "dest"
        dest.mkdir()
        with patch("crossbake.toolchain.installers._download", side_effect=fake_download) as m_dl:
            install_archive(spec, dest, TARGET)
        assert m_dl.call_args[0][1] == f"https://example.com/tool-2.0-{TARGET}.tar.gz"
        assert (dest / "tool-2.0" / "bin" / "tool").is_file()

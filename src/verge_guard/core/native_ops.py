"""Subprocess-backed privileged operations.

- macOS: ``osascript`` with administrator privileges runs ``chown``/``chmod``
  so the core binary is setuid root.
- Linux: ``setcap`` through ``pkexec`` (or ``sudo``) grants the network
  capabilities tun mode needs.
- Windows: the background service is queried with ``sc`` and installed with
  the bundled ``install-service.exe``.
- Other platforms query the service with ``systemctl``.

All blocking calls run in a worker thread so the event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
import shlex
import shutil
import subprocess
from typing import Final

from verge_guard.core.app_config import AppConfig
from verge_guard.core.errors import (
    BinaryMissingError,
    EscalationFailure,
    StructuralQueryFailure,
)
from verge_guard.core.helper_process import HelperProcess
from verge_guard.core.platform_info import PlatformName
from verge_guard.core.privileged_ops import (
    SERVICE_INSTALLED,
    SERVICE_MISSING,
    SERVICE_OK,
    PrivilegeCheckResult,
)
from verge_guard.core.storage import get_data_dir

logger = logging.getLogger(__name__)

TUN_CAPABILITIES: Final[str] = "cap_net_bind_service,cap_net_admin,cap_dac_override=+ep"
MACOS_ADMIN_GID: Final[int] = 80
SC_SERVICE_DOES_NOT_EXIST: Final[int] = 1060


def _format_cmd(cmd: list[str]) -> str:
    try:
        return shlex.join(cmd)
    except TypeError:
        return str(cmd)


def _run(
    cmd: list[str],
    *,
    timeout_s: float,
    error_cls: type[EscalationFailure] = EscalationFailure,
) -> subprocess.CompletedProcess[str]:
    """Run ``cmd``; only spawn errors and timeouts raise, the caller checks the exit code."""
    command_text = _format_cmd(cmd)
    logger.info("Running command: %s", command_text)
    try:
        result = subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired as exc:
        logger.exception("Command timed out: %s", command_text)
        raise error_cls(
            f"Command timed out: {command_text}",
            user_message="Timed out waiting for a privileged command.",
        ) from exc
    except OSError as exc:
        logger.exception("Command execution failed: %s", command_text)
        raise error_cls(
            f"Command failed: {command_text}: {exc}",
            user_message=f"Failed to run {cmd[0]}: {exc.strerror or exc}",
        ) from exc

    logger.info(
        "Command result rc=%s cmd=%s stdout=%r stderr=%r",
        result.returncode,
        command_text,
        (result.stdout or "").strip(),
        (result.stderr or "").strip(),
    )
    return result


def _failure_detail(result: subprocess.CompletedProcess[str]) -> str:
    return (result.stderr or "").strip() or (result.stdout or "").strip() or "unknown error"


def elevation_tool() -> str:
    return "pkexec" if shutil.which("pkexec") else "sudo"


def resolve_core_path(core: str, platform: PlatformName, core_dir: Path | None = None) -> Path:
    name = core
    if platform == "windows" and not name.lower().endswith(".exe"):
        name = f"{name}.exe"
    if core_dir is not None:
        candidate = core_dir / name
        if candidate.exists():
            return candidate.resolve()
    else:
        found = shutil.which(name)
        if found:
            return Path(found).resolve()
    raise BinaryMissingError(
        f"Core binary not found: {name}",
        user_message=f"Core binary {name} was not found.",
    )


def _owner_privileged(path: Path, admin_gid: int) -> bool:
    try:
        st = path.stat()
    except OSError:
        return False
    return (
        st.st_uid == 0
        and st.st_gid == admin_gid
        and bool(st.st_mode & 0o4000)
        and bool(st.st_mode & 0o2000)
    )


def core_is_privileged(path: Path, platform: PlatformName, *, timeout_s: float = 5.0) -> bool:
    """Whether the core binary already has the rights tun mode needs."""
    if platform == "macos":
        return _owner_privileged(path, MACOS_ADMIN_GID)
    if platform == "linux":
        if shutil.which("getcap") is None:
            return _owner_privileged(path, 0)
        try:
            result = _run(["getcap", str(path)], timeout_s=timeout_s)
        except EscalationFailure:
            return False
        return result.returncode == 0 and "cap_net_admin" in (result.stdout or "")
    return False


def _applescript_admin_command(shell: str) -> str:
    escaped = shell.replace("\\", "\\\\").replace('"', '\\"')
    return f'do shell script "{escaped}" with administrator privileges'


class NativePrivilegedOps:
    def __init__(
        self,
        platform: PlatformName,
        config: AppConfig | None = None,
        *,
        helper: HelperProcess | None = None,
    ) -> None:
        self.platform = platform
        self.config = config or AppConfig()
        self.helper = helper

    @property
    def service_dir(self) -> Path:
        return self.config.service_dir or (get_data_dir() / "service")

    async def check_service(self) -> PrivilegeCheckResult:
        return await asyncio.to_thread(self._check_service_sync)

    async def install_service(self) -> None:
        await asyncio.to_thread(self._install_service_sync)

    async def grant_permission(self, core: str) -> None:
        await asyncio.to_thread(self._grant_permission_sync, core)

    async def restart_helper(self) -> None:
        if self.helper is None:
            raise EscalationFailure("No helper process configured")
        await asyncio.to_thread(self.helper.restart)

    def _check_service_sync(self) -> PrivilegeCheckResult:
        timeout_s = self.config.operation_timeout_s
        name = self.config.service_name
        if self.platform == "windows":
            if shutil.which("sc") is None:
                raise StructuralQueryFailure("sc is not available")
            result = _run(["sc", "query", name], timeout_s=timeout_s, error_cls=StructuralQueryFailure)
            if result.returncode == SC_SERVICE_DOES_NOT_EXIST:
                return PrivilegeCheckResult(SERVICE_MISSING, "service not installed")
            if result.returncode != 0:
                raise StructuralQueryFailure(
                    f"sc query failed: {_failure_detail(result)}",
                    user_message="Could not query the background service.",
                )
            if "RUNNING" in (result.stdout or ""):
                return PrivilegeCheckResult(SERVICE_OK, "running")
            return PrivilegeCheckResult(SERVICE_INSTALLED, "installed")

        if shutil.which("systemctl") is None:
            raise StructuralQueryFailure("systemctl is not available")
        result = _run(
            ["systemctl", "show", "--property=LoadState,ActiveState", f"{name}.service"],
            timeout_s=timeout_s,
            error_cls=StructuralQueryFailure,
        )
        if result.returncode != 0:
            raise StructuralQueryFailure(
                f"systemctl show failed: {_failure_detail(result)}",
                user_message="Could not query the background service.",
            )
        props: dict[str, str] = {}
        for line in (result.stdout or "").splitlines():
            key, sep, value = line.partition("=")
            if sep:
                props[key.strip()] = value.strip()
        if props.get("LoadState") in {None, "", "not-found"}:
            return PrivilegeCheckResult(SERVICE_MISSING, "service not installed")
        if props.get("ActiveState") == "active":
            return PrivilegeCheckResult(SERVICE_OK, "active")
        return PrivilegeCheckResult(SERVICE_INSTALLED, props.get("ActiveState", ""))

    def _install_service_sync(self) -> None:
        if self.platform == "windows":
            installer = self.service_dir / "install-service.exe"
            cmd = [str(installer)]
        else:
            installer = self.service_dir / "install-service"
            cmd = [elevation_tool(), str(installer)]
        if not installer.exists():
            raise EscalationFailure(
                f"Service installer not found: {installer}",
                user_message="Service installer not found.",
            )
        result = _run(cmd, timeout_s=self.config.operation_timeout_s)
        if result.returncode != 0:
            detail = _failure_detail(result)
            raise EscalationFailure(
                f"Service install failed: {detail}",
                user_message=f"Failed to install service: {detail}",
            )

    def _grant_permission_sync(self, core: str) -> None:
        if self.platform not in ("macos", "linux"):
            raise EscalationFailure(f"Granting permission is not supported on {self.platform}")

        timeout_s = self.config.operation_timeout_s
        path = resolve_core_path(core, self.platform, self.config.core_dir)
        if core_is_privileged(path, self.platform, timeout_s=timeout_s):
            logger.info("Core %s already has the required permissions", path)
            return

        quoted = shlex.quote(str(path))
        if self.platform == "macos":
            shell = f"chown root:admin {quoted}\nchmod +sx {quoted}"
            cmd = ["osascript", "-e", _applescript_admin_command(shell)]
        else:
            cmd = [elevation_tool(), "setcap", TUN_CAPABILITIES, str(path)]

        result = _run(cmd, timeout_s=timeout_s)
        if result.returncode != 0:
            detail = _failure_detail(result)
            raise EscalationFailure(
                f"Permission grant failed for {path}: {detail}",
                user_message=detail,
            )
        logger.info("Granted permissions to %s", path)

#!/usr/bin/env python3
"""Unattended MySQL installer for Linux hosts.

The installer takes a MySQL "minimal" binary distribution (``.tar.xz``).
With no archive on the command line it downloads the newest one.  It then:

* provisions the prerequisites: the ``tar`` command, the shared libraries
  the server links against and the ``mysql`` service user and group;
* extracts the archive, writes ``/etc/my.cnf`` and initialises the data
  directory;
* moves the distribution into place (``/usr/local/mysql`` by default),
  starts the server and replaces the generated temporary root password;
* links the ``mysql`` client into ``/usr/local/bin`` and registers a systemd
  unit when ``systemctl`` is available.

The rotated root password is printed at the end and stored in
``<target>/generated-password.txt``.
"""
from __future__ import annotations

import argparse
import dataclasses
import datetime as _dt
import grp
import json
import logging
import os
import pathlib
import pwd
import re
import secrets
import shutil
import socket
import subprocess
import sys
import tempfile
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for older runtimes
    import tomli as tomllib  # type: ignore[assignment]

from timeutil import format_time
from versionutil import find_latest_version_file

__version__ = "1.0.0"

LOG = logging.getLogger(__name__)

PROC_DIR = pathlib.Path("/proc")
MEMINFO_PATH = pathlib.Path("/proc/meminfo")
SERVER_PROCESS_NAME = "mysqld"
PASSWORD_FILE_NAME = "generated-password.txt"
PASSWORD_CHANGE_ATTEMPTS = 3
PACKAGE_INSTALL_TIMEOUT = 10
SERVICE_ENABLE_TIMEOUT = 5
TEMPORARY_PASSWORD_PATTERN = re.compile(r"temporary password is.+:\s*(.+)")
RELEASE_VERSION_PATTERN = re.compile(r"<h1>MySQL Community Server ([\d.]+) ")

DEFAULT_SERVER_OPTIONS: Dict[str, str] = {
    "max_connections": "256",
    "innodb_flush_log_at_trx_commit": "2",
    "max_prepared_stmt_count": "65535",
    "binlog_cache_size": "1M",
    "binlog_stmt_cache_size": "1M",
    "thread_cache_size": "32",
    "binlog_expire_logs_seconds": "604800",
    "innodb_sort_buffer_size": "8M",
}


class InstallError(RuntimeError):
    """Raised when an installation step cannot be completed."""


def ensure_root() -> None:
    if os.geteuid() != 0:
        raise PermissionError("mysql_setup.py requires root privileges to install MySQL")


def run_command(
    cmd: Sequence[str],
    check: bool = True,
    timeout: Optional[float] = None,
    redact: Iterable[str] = (),
) -> subprocess.CompletedProcess[str]:
    display = " ".join(cmd)
    for secret in redact:
        if secret:
            display = display.replace(secret, "******")
    LOG.debug("Executing command: %s", display)
    result = subprocess.run(list(cmd), capture_output=True, text=True, check=False, timeout=timeout)
    if check and result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, list(cmd), result.stdout, result.stderr)
    if result.stdout:
        LOG.debug("stdout: %s", result.stdout.strip())
    if result.stderr:
        LOG.debug("stderr: %s", result.stderr.strip())
    return result


def _stderr_of(exc: subprocess.CalledProcessError) -> str:
    return (exc.stderr or exc.stdout or str(exc)).strip()


# --------------------------------------------------------------------------
# Configuration


@dataclasses.dataclass(frozen=True)
class InstallSettings:
    """Where the distribution ends up."""

    target_dir: pathlib.Path = pathlib.Path("/usr/local/mysql")
    temp_dir: Optional[pathlib.Path] = None
    client_link: pathlib.Path = pathlib.Path("/usr/local/bin/mysql")

    def work_dir(self) -> pathlib.Path:
        if self.temp_dir is not None:
            return self.temp_dir
        return pathlib.Path(tempfile.gettempdir()) / "mysql-setup-tmp"


@dataclasses.dataclass(frozen=True)
class AccountSettings:
    """System account that owns the data directory and runs the server."""

    user: str = "mysql"
    group: str = "mysql"


@dataclasses.dataclass(frozen=True)
class ServerSettings:
    port: int = 3306
    my_cnf: pathlib.Path = pathlib.Path("/etc/my.cnf")
    startup_timeout: int = 30
    options: Dict[str, str] = dataclasses.field(default_factory=lambda: dict(DEFAULT_SERVER_OPTIONS))


@dataclasses.dataclass(frozen=True)
class PackageSettings:
    """Shared libraries installed before the server is initialised."""

    apt: Tuple[str, ...] = ("libaio1", "libncurses5")
    yum: Tuple[str, ...] = ("libaio", "ncurses-libs", "ncurses-compat-libs", "numactl-libs")


@dataclasses.dataclass(frozen=True)
class LibraryLink:
    """Compatibility symlink pointing at the newest ``directory/prefix*`` file."""

    directory: pathlib.Path
    prefix: str
    link: pathlib.Path


DEFAULT_LIBRARY_LINKS = (
    LibraryLink(pathlib.Path("/usr/lib64"), "libncurses.so.", pathlib.Path("/usr/lib64/libncurses.so.5")),
    LibraryLink(pathlib.Path("/usr/lib64"), "libtinfo.so.", pathlib.Path("/usr/lib64/libtinfo.so.5")),
)


@dataclasses.dataclass(frozen=True)
class DownloadSettings:
    release_page: str = "https://dev.mysql.com/downloads/mysql/"
    url_template: str = (
        "https://cdn.mysql.com/Downloads/MySQL-{major}/mysql-{version}-linux-glibc2.17-x86_64-minimal.tar.xz"
    )
    default_version: str = "8.2.0"
    user_agent: str = (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/105.0.0.0 Safari/537.36"
    )

    def archive_url(self, version: str) -> str:
        return self.url_template.format(major=major_version(version), version=version)


@dataclasses.dataclass(frozen=True)
class ServiceSettings:
    enabled: bool = True
    unit_path: pathlib.Path = pathlib.Path("/etc/systemd/system/mysqld.service")


def _section(data: Mapping[str, object], name: str) -> Mapping[str, object]:
    section = data.get(name, {})
    if not isinstance(section, Mapping):
        raise TypeError(f"[{name}] section must be a table in the configuration")
    return section


def _as_str(section: Mapping[str, object], key: str, default: str, where: str) -> str:
    value = section.get(key, default)
    if not isinstance(value, str):
        raise TypeError(f"{where}.{key} must be a string")
    return value


def _as_int(section: Mapping[str, object], key: str, default: int, where: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{where}.{key} must be an integer")
    return value


def _as_str_tuple(section: Mapping[str, object], key: str, default: Tuple[str, ...], where: str) -> Tuple[str, ...]:
    value = section.get(key, default)
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise TypeError(f"{where}.{key} must be a list of strings")
    return tuple(str(item) for item in value)


@dataclasses.dataclass(frozen=True)
class SetupConfig:
    """Configuration loaded from a TOML manifest.  Every section is optional."""

    install: InstallSettings = dataclasses.field(default_factory=InstallSettings)
    account: AccountSettings = dataclasses.field(default_factory=AccountSettings)
    server: ServerSettings = dataclasses.field(default_factory=ServerSettings)
    packages: PackageSettings = dataclasses.field(default_factory=PackageSettings)
    library_links: Tuple[LibraryLink, ...] = DEFAULT_LIBRARY_LINKS
    download: DownloadSettings = dataclasses.field(default_factory=DownloadSettings)
    service: ServiceSettings = dataclasses.field(default_factory=ServiceSettings)

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "SetupConfig":
        install_section = _section(data, "install")
        defaults = InstallSettings()
        temp_raw = install_section.get("temp_dir")
        if temp_raw is not None and not isinstance(temp_raw, str):
            raise TypeError("install.temp_dir must be a string")
        install = InstallSettings(
            target_dir=pathlib.Path(_as_str(install_section, "target_dir", str(defaults.target_dir), "install")),
            temp_dir=pathlib.Path(temp_raw) if temp_raw else None,
            client_link=pathlib.Path(_as_str(install_section, "client_link", str(defaults.client_link), "install")),
        )

        account_section = _section(data, "account")
        account = AccountSettings(
            user=_as_str(account_section, "user", AccountSettings.user, "account"),
            group=_as_str(account_section, "group", AccountSettings.group, "account"),
        )

        server_section = _section(data, "server")
        options_section = server_section.get("options", {})
        if not isinstance(options_section, Mapping):
            raise TypeError("[server.options] must be a table of my.cnf options")
        options = dict(DEFAULT_SERVER_OPTIONS)
        for key, value in options_section.items():
            if isinstance(value, bool):
                options[str(key)] = "ON" if value else "OFF"
            elif isinstance(value, (str, int, float)):
                options[str(key)] = str(value)
            else:
                raise TypeError(f"server.options.{key} must be a string or a number")
        server = ServerSettings(
            port=_as_int(server_section, "port", ServerSettings.port, "server"),
            my_cnf=pathlib.Path(_as_str(server_section, "my_cnf", str(ServerSettings.my_cnf), "server")),
            startup_timeout=_as_int(server_section, "startup_timeout", ServerSettings.startup_timeout, "server"),
            options=options,
        )

        packages_section = _section(data, "packages")
        packages = PackageSettings(
            apt=_as_str_tuple(packages_section, "apt", PackageSettings.apt, "packages"),
            yum=_as_str_tuple(packages_section, "yum", PackageSettings.yum, "packages"),
        )

        links_section = data.get("library_links")
        if links_section is None:
            library_links: Tuple[LibraryLink, ...] = DEFAULT_LIBRARY_LINKS
        elif isinstance(links_section, Iterable) and not isinstance(links_section, (str, bytes, Mapping)):
            links: List[LibraryLink] = []
            for entry in links_section:
                if not isinstance(entry, Mapping):
                    raise TypeError("Each library_links entry must be a table")
                link_raw = _as_str(entry, "link", "", "library_links")
                prefix = _as_str(entry, "prefix", "", "library_links")
                if not link_raw or not prefix:
                    raise TypeError("library_links entries require 'prefix' and 'link'")
                link = pathlib.Path(link_raw)
                directory_raw = _as_str(entry, "directory", str(link.parent), "library_links")
                links.append(LibraryLink(directory=pathlib.Path(directory_raw), prefix=prefix, link=link))
            library_links = tuple(links)
        else:
            raise TypeError("[[library_links]] section must be a list of tables")

        download_section = _section(data, "download")
        download = DownloadSettings(
            release_page=_as_str(download_section, "release_page", DownloadSettings.release_page, "download"),
            url_template=_as_str(download_section, "url_template", DownloadSettings.url_template, "download"),
            default_version=_as_str(
                download_section, "default_version", DownloadSettings.default_version, "download"
            ),
            user_agent=_as_str(download_section, "user_agent", DownloadSettings.user_agent, "download"),
        )

        service_section = _section(data, "service")
        enabled = service_section.get("enabled", True)
        if not isinstance(enabled, bool):
            raise TypeError("service.enabled must be a boolean")
        service = ServiceSettings(
            enabled=enabled,
            unit_path=pathlib.Path(
                _as_str(service_section, "unit_path", str(ServiceSettings.unit_path), "service")
            ),
        )

        return cls(
            install=install,
            account=account,
            server=server,
            packages=packages,
            library_links=library_links,
            download=download,
            service=service,
        )


DEFAULT_CONFIG_PATH = pathlib.Path(__file__).with_name("mysql_setup.toml")


def load_setup_config(path: Optional[pathlib.Path] = None) -> SetupConfig:
    """Load a :class:`SetupConfig` from the provided TOML file.

    Without ``path`` the ``mysql_setup.toml`` next to this module is used, or
    the built-in defaults when that file is not shipped.
    """

    config_path = path or DEFAULT_CONFIG_PATH
    if path is None and not config_path.exists():
        LOG.debug("Default configuration %s not found; using built-in defaults", config_path)
        return SetupConfig()
    with config_path.open("rb") as fh:
        data = tomllib.load(fh)
    if not isinstance(data, Mapping):
        raise TypeError("Configuration root must be a table")
    return SetupConfig.from_mapping(data)


# --------------------------------------------------------------------------
# Host inspection


@dataclasses.dataclass(frozen=True)
class ResourceSummary:
    """Hardware resources discovered on the host."""

    mem_total_kb: int
    cpu_count: int

    @property
    def mem_total_gb(self) -> int:
        return self.mem_total_kb // (1024 ** 2)

    @property
    def buffer_pool_gb(self) -> int:
        """Half of the physical memory, at least 1 GiB."""
        return max(1, self.mem_total_gb // 2)


class SystemInspector:
    """Collects system information from procfs."""

    def __init__(self, meminfo_path: Optional[pathlib.Path] = None) -> None:
        self.meminfo_path = meminfo_path or MEMINFO_PATH

    def collect(self) -> ResourceSummary:
        meminfo = self._read_meminfo()
        mem_total_kb = int(meminfo.get("MemTotal", 0))
        cpu_count = os.cpu_count() or 1
        LOG.debug("System resources - RAM: %s KB, CPUs: %s", mem_total_kb, cpu_count)
        return ResourceSummary(mem_total_kb=mem_total_kb, cpu_count=cpu_count)

    def _read_meminfo(self) -> Dict[str, int]:
        units = {"kB": 1, "mB": 1024, "gB": 1024 ** 2}
        data: Dict[str, int] = {}
        try:
            with self.meminfo_path.open("r", encoding="utf-8") as fh:
                for line in fh:
                    if ":" not in line:
                        continue
                    key, value = line.split(":", 1)
                    fields = value.strip().split()
                    if not fields or not fields[0].isdigit():
                        continue
                    factor = units.get(fields[1], 1) if len(fields) > 1 else 1
                    data[key.strip()] = int(fields[0]) * factor
        except FileNotFoundError as exc:
            raise RuntimeError(f"{self.meminfo_path} is not available on this platform") from exc
        return data


def find_pid_with_name(name: str, proc_dir: Optional[pathlib.Path] = None) -> int:
    """Return the pid of the first process whose ``comm`` equals ``name``, or 0."""

    root = proc_dir or PROC_DIR
    for comm_file in sorted(root.glob("*/comm")):
        try:
            comm = comm_file.read_text(encoding="utf-8", errors="replace").strip()
        except OSError:
            continue
        if comm == name and comm_file.parent.name.isdigit():
            return int(comm_file.parent.name)
    return 0


def lookup_command(candidates: Iterable[str]) -> Optional[str]:
    for name in candidates:
        path = shutil.which(name)
        if path:
            return path
    return None


def wait_for_port(host: str, port: int, attempts: int, delay: float = 1.0) -> bool:
    for _ in range(attempts):
        try:
            with socket.create_connection((host, port), timeout=delay):
                return True
        except OSError:
            time.sleep(delay)
    return False


# --------------------------------------------------------------------------
# Rendered files


def render_my_cnf(
    base_dir: pathlib.Path,
    data_dir: pathlib.Path,
    server: ServerSettings,
    resources: Optional[ResourceSummary] = None,
) -> str:
    """Render the ``[mysqld]`` section of ``my.cnf``.

    ``innodb_buffer_pool_size`` defaults to half of the host memory unless the
    configuration sets it explicitly.
    """

    options = dict(server.options)
    if "innodb_buffer_pool_size" not in options:
        pool_gb = resources.buffer_pool_gb if resources is not None else 1
        options["innodb_buffer_pool_size"] = f"{pool_gb}G"

    lines = [
        "[mysqld]",
        f"port={server.port}",
        f'basedir="{base_dir}"',
        f'datadir="{data_dir}"',
        "",
    ]
    lines.extend(f"{key}={value}" for key, value in options.items())
    return "\n".join(lines) + "\n"


def render_service_unit(base_dir: pathlib.Path, bash_path: Optional[str] = None) -> str:
    server_script = base_dir / "support-files" / "mysql.server"
    start_cmd = f"{server_script} start"
    if bash_path:
        start_cmd = f'{bash_path} -c "{start_cmd}"'
    return (
        "### BEGIN INIT INFO\n"
        "# Provides: mysql\n"
        "# Required-Start: $local_fs $network $remote_fs\n"
        "# Should-Start: ypbind nscd ldap ntpd xntpd\n"
        "# Required-Stop: $local_fs $network $remote_fs\n"
        "# Default-Start:  2 3 4 5\n"
        "# Default-Stop: 0 1 6\n"
        "# Short-Description: start and stop MySQL\n"
        "# Description: MySQL is a very fast and reliable SQL database engine.\n"
        "### END INIT INFO\n"
        "\n"
        "[Unit]\n"
        "Description=MySQL Service\n"
        "Before=shutdown.target\n"
        "After=network-online.target\n"
        "\n"
        "[Service]\n"
        "Type=simple\n"
        "Restart=on-failure\n"
        "RestartSec=5s\n"
        "RemainAfterExit=yes\n"
        f"ExecStart={start_cmd}\n"
        f"ExecStop={server_script} stop\n"
        f"ExecRestart={server_script} restart\n"
        f"ExecStatus={server_script} status\n"
        f"ExecReload={server_script} reload\n"
        "\n"
        "[Install]\n"
        "WantedBy=multi-user.target\n"
    )


def extract_temporary_password(*outputs: Optional[str]) -> Optional[str]:
    """Find the password ``mysqld --initialize`` prints, checking each output in turn."""

    for output in outputs:
        if not output:
            continue
        match = TEMPORARY_PASSWORD_PATTERN.search(output)
        if match:
            return match.group(1).strip()
    return None


def generate_password() -> str:
    return secrets.token_hex(16)


class ConfigWriter:
    """Writes configuration files, keeping a timestamped copy of the previous one."""

    def write_file(self, path: pathlib.Path, content: str, mode: Optional[int] = None, backup: bool = True) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        if backup and path.exists():
            saved = path.with_name(f"{path.name}.{format_time('YmdHis')}")
            try:
                os.rename(path, saved)
            except OSError as exc:
                raise InstallError(f"backup '{path}' failed: {exc}") from exc
            LOG.info("Moved existing %s to %s", path, saved)
        try:
            with path.open("w", encoding="utf-8") as fh:
                fh.write(content)
            if mode is not None:
                os.chmod(path, mode)
        except OSError as exc:
            raise InstallError(f"write '{path}' failed: {exc}") from exc
        LOG.info("Wrote %s", path)


# --------------------------------------------------------------------------
# Package managers


class PackageManager(ABC):
    """Simple wrapper around the system package manager."""

    def __init__(self, executable: str, pause: float = 1.0) -> None:
        self.executable = executable
        self.pause = pause

    @classmethod
    def for_system(cls) -> Optional["PackageManager"]:
        for manager_cls in (AptManager, YumManager):
            manager = manager_cls.try_create()
            if manager is not None:
                return manager
        return None

    @classmethod
    @abstractmethod
    def try_create(cls) -> Optional["PackageManager"]:
        """Return an initialised manager when the backend is available."""

    @abstractmethod
    def is_installed(self, package: str) -> bool:
        """Return ``True`` when ``package`` is already present on the host."""

    @abstractmethod
    def install_one(self, package: str) -> None:
        """Install ``package``, raising :class:`InstallError` on failure."""

    def install(self, packages: Iterable[str], required: bool = True) -> None:
        for pkg in packages:
            LOG.info("checking %s ...", pkg)
            try:
                installed = self.is_installed(pkg)
            except OSError as exc:
                LOG.warning("Failed to determine installation status for %s: %s", pkg, exc)
                installed = False

            if installed:
                LOG.info("Package '%s' is already installed; skipping.", pkg)
                continue

            try:
                self.install_one(pkg)
            except InstallError:
                if required:
                    raise
                LOG.warning("Failed to install %s; continuing", pkg)
            time.sleep(self.pause)


class AptManager(PackageManager):
    """Package manager implementation for Debian/Ubuntu based systems."""

    def __init__(self, executable: str, pause: float = 1.0) -> None:
        super().__init__(executable, pause)
        self.query_tool = shutil.which("dpkg-query") or "dpkg-query"

    @classmethod
    def try_create(cls) -> Optional["PackageManager"]:
        executable = shutil.which("apt-get")
        if not executable:
            return None
        return cls(executable)

    def is_installed(self, package: str) -> bool:
        result = subprocess.run(
            [self.query_tool, "-W", "-f=${Status}", package],
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            return False
        return "install ok installed" in (result.stdout or "")

    def install_one(self, package: str) -> None:
        try:
            run_command([self.executable, "-y", "install", package])
            return
        except subprocess.CalledProcessError as exc:
            error = exc

        apt = shutil.which("apt")
        if apt:
            try:
                run_command([apt, "-y", "install", package])
                return
            except subprocess.CalledProcessError as exc:
                error = exc
        raise InstallError(f"install {package} failed: {_stderr_of(error)}")


class YumManager(PackageManager):
    """Package manager implementation for yum/dnf based systems."""

    def __init__(self, executable: str, pause: float = 1.0) -> None:
        super().__init__(executable, pause)
        self.query_tool = shutil.which("rpm") or "rpm"

    @classmethod
    def try_create(cls) -> Optional["PackageManager"]:
        executable = shutil.which("yum") or shutil.which("dnf")
        if not executable:
            return None
        return cls(executable)

    def is_installed(self, package: str) -> bool:
        result = subprocess.run(
            [self.query_tool, "-q", package], capture_output=True, text=True, check=False
        )
        return result.returncode == 0

    def install_one(self, package: str) -> None:
        try:
            run_command([self.executable, "-y", "install", package])
        except subprocess.CalledProcessError as exc:
            raise InstallError(f"install {package} failed: {_stderr_of(exc)}") from exc


def install_tar_command() -> bool:
    """Try dnf, yum and apt-get (falling back to apt) to install ``tar``."""

    attempts: List[List[str]] = []
    for name in ("dnf", "yum"):
        executable = shutil.which(name)
        if executable:
            attempts.append([executable, "-y", "install", "tar"])
            break
    else:
        apt_get = shutil.which("apt-get")
        if apt_get:
            attempts.append([apt_get, "-y", "install", "tar"])
            apt = shutil.which("apt")
            if apt:
                attempts.append([apt, "-y", "install", "tar"])

    for cmd in attempts:
        try:
            run_command(cmd, timeout=PACKAGE_INSTALL_TIMEOUT)
            return True
        except (OSError, subprocess.SubprocessError) as exc:
            LOG.debug("'%s' failed: %s", " ".join(cmd), exc)
    return False


# --------------------------------------------------------------------------
# Download


def major_version(version: str) -> str:
    pieces = version.split(".")
    if len(pieces) >= 2:
        return ".".join(pieces[:2])
    return version


def parse_release_version(page: str) -> Optional[str]:
    match = RELEASE_VERSION_PATTERN.search(page)
    if match:
        return match.group(1)
    return None


class ProgressReporter:
    """Logs download progress in steps of more than 10%, at most once per interval."""

    def __init__(
        self,
        total: int,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.total = total
        self.interval = interval
        self.clock = clock
        self.written = 0
        self._last_progress = -1.0
        self._last_report: Optional[float] = None

    @property
    def progress(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(1.0, self.written / self.total)

    def update(self, size: int) -> None:
        self.written += size
        now = self.clock()
        if self._last_report is not None and now - self._last_report < self.interval:
            return
        self._report(now)

    def finish(self) -> None:
        if self.total > 0 and self._last_progress < 1:
            self._report(self.clock())
        elif self.total <= 0:
            LOG.info("downloaded %d bytes", self.written)

    def _report(self, now: float) -> None:
        progress = self.progress
        if self._last_progress < 0 or progress - self._last_progress > 0.1 or progress == 1:
            self._last_progress = progress
            self._last_report = now
            LOG.info("%.2f%%", progress * 100)


# --------------------------------------------------------------------------
# Installer


class MySQLInstaller:
    """Installs a MySQL binary distribution and rotates the root password."""

    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        config: Optional[SetupConfig] = None,
        install_service: bool = True,
        writer: Optional[ConfigWriter] = None,
        inspector: Optional[SystemInspector] = None,
    ) -> None:
        self.config = config or SetupConfig()
        self.install_service = install_service and self.config.service.enabled
        self.writer = writer or ConfigWriter()
        self.inspector = inspector or SystemInspector()
        self._password = ""
        self._account_tools: Optional[Tuple[str, str]] = None

    @property
    def password(self) -> str:
        """Root password set during the last successful installation."""
        return self._password

    # -- download -------------------------------------------------------

    def latest_version(self) -> str:
        settings = self.config.download
        LOG.info("checking mysql latest version ...")
        request = urllib.request.Request(settings.release_page, headers={"User-Agent": settings.user_agent})
        try:
            with urllib.request.urlopen(request, timeout=30) as response:
                page = response.read().decode("utf-8", errors="replace")
        except (urllib.error.URLError, OSError) as exc:
            LOG.warning("check latest version failed: %s; using %s", exc, settings.default_version)
            return settings.default_version

        version = parse_release_version(page)
        if version is None:
            LOG.warning("latest version not found on %s; using %s", settings.release_page, settings.default_version)
            return settings.default_version
        return version

    def download(self, dest_dir: Optional[pathlib.Path] = None) -> pathlib.Path:
        """Download the newest archive into ``dest_dir`` (default: cwd) and return its path."""

        settings = self.config.download
        version = self.latest_version()
        LOG.info("found version: v%s", version)

        url = settings.archive_url(version)
        path = (dest_dir or pathlib.Path.cwd()) / url.rsplit("/", 1)[-1]
        LOG.info("downloading from url '%s' ...", url)

        request = urllib.request.Request(url, headers={"User-Agent": settings.user_agent})
        try:
            with urllib.request.urlopen(request, timeout=60) as response:
                status = getattr(response, "status", 200)
                if status != 200:
                    raise InstallError(f"download failed: invalid response code: {status}")
                total = int(response.headers.get("Content-Length") or 0)
                reporter = ProgressReporter(total)
                with path.open("wb") as fh:
                    while True:
                        chunk = response.read(self.CHUNK_SIZE)
                        if not chunk:
                            break
                        fh.write(chunk)
                        reporter.update(len(chunk))
                reporter.finish()
        except urllib.error.HTTPError as exc:
            raise InstallError(f"download failed: invalid response code: {exc.code}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise InstallError(f"download failed: {exc}") from exc

        LOG.info("saved %s", path)
        return path

    # -- install --------------------------------------------------------

    def install_from_file(
        self, archive: Union[str, pathlib.Path], target_dir: Optional[pathlib.Path] = None
    ) -> None:
        archive = pathlib.Path(archive)
        target_dir = pathlib.Path(target_dir or self.config.install.target_dir)

        self.check_server_not_running()
        check_target_dir(target_dir, remove_empty=True)
        self.ensure_commands()
        self.install_libraries()
        self.ensure_account()
        self.ensure_parent_dir(target_dir)
        self.check_archive(archive)

        work_dir = self.config.install.work_dir()
        base_dir = self.extract(archive, work_dir)
        data_dir = self.prepare_data_dir(base_dir)

        resources = self._resources()
        my_cnf = self.config.server.my_cnf
        self.writer.write_file(my_cnf, render_my_cnf(base_dir, data_dir, self.config.server, resources), mode=0o644)

        temporary_password = self.initialize(base_dir)

        LOG.info("moving files to target dir ...")
        try:
            shutil.move(str(base_dir), str(target_dir))
        except OSError as exc:
            raise InstallError(f"move '{base_dir}' to '{target_dir}' failed: {exc}") from exc
        self.writer.write_file(
            my_cnf,
            render_my_cnf(target_dir, target_dir / "data", self.config.server, resources),
            mode=0o644,
            backup=False,
        )

        self.start_server(target_dir)
        self.change_password(target_dir, temporary_password)

        try:
            work_dir.rmdir()
        except OSError as exc:
            LOG.debug("Leaving temporary directory %s: %s", work_dir, exc)

        self.link_client(target_dir)
        if self.install_service:
            try:
                self.register_service(target_dir)
            except (InstallError, OSError, subprocess.SubprocessError) as exc:
                LOG.warning("install service failed: %s", exc)

        LOG.info("finished")

    def check_server_not_running(self) -> None:
        LOG.info("checking %s ...", SERVER_PROCESS_NAME)
        pid = find_pid_with_name(SERVER_PROCESS_NAME)
        if pid > 0:
            raise InstallError(f"there is already a running mysql server process, pid: '{pid}'")

    def ensure_commands(self) -> None:
        LOG.info("checking 'tar' command ...")
        if not shutil.which("tar"):
            LOG.info("installing 'tar' command ...")
            if not install_tar_command():
                LOG.warning("failed to install 'tar'")

        LOG.info("checking system commands ...")
        if not shutil.which("tar"):
            raise InstallError("could not find 'tar' command in this system")
        self._account_tools = self.find_account_tools()

    def find_account_tools(self) -> Tuple[str, str]:
        group_add = lookup_command(("groupadd", "addgroup"))
        if group_add is None:
            raise InstallError("could not find 'groupadd' command in this system")
        user_add = lookup_command(("useradd", "adduser"))
        if user_add is None:
            raise InstallError("could not find 'useradd' command in this system")
        return group_add, user_add

    def install_libraries(self) -> None:
        manager = PackageManager.for_system()
        if isinstance(manager, AptManager):
            manager.install(self.config.packages.apt, required=True)
            return

        if manager is not None:
            manager.install(self.config.packages.yum, required=False)
        self.link_libraries()

    def link_libraries(self) -> None:
        for spec in self.config.library_links:
            if spec.link.exists() or spec.link.is_symlink():
                continue
            latest = find_latest_version_file(spec.directory, spec.prefix)
            if not latest:
                continue
            LOG.info("link '%s' to '%s'", latest, spec.link)
            try:
                os.symlink(latest, spec.link)
            except OSError as exc:
                LOG.warning("failed to link '%s' to '%s': %s", latest, spec.link, exc)

    def ensure_account(self) -> None:
        account = self.config.account
        group_add, user_add = self._account_tools or self.find_account_tools()

        LOG.info("checking '%s' user group ...", account.group)
        try:
            grp.getgrnam(account.group)
        except KeyError:
            try:
                run_command([group_add, account.group])
            except subprocess.CalledProcessError as exc:
                raise InstallError(f"add '{account.group}' user group failed: {_stderr_of(exc)}") from exc
            LOG.info("Created group %s", account.group)

        LOG.info("checking '%s' user ...", account.user)
        try:
            pwd.getpwnam(account.user)
        except KeyError:
            if user_add.endswith("useradd"):
                cmd = [user_add, account.user, "-g", account.group]
            else:
                cmd = [user_add, "-S", "-G", account.group, account.user]
            try:
                run_command(cmd)
            except subprocess.CalledProcessError as exc:
                raise InstallError(f"add '{account.user}' user failed: {_stderr_of(exc)}") from exc
            LOG.info("Created user %s", account.user)

    def ensure_parent_dir(self, target_dir: pathlib.Path) -> None:
        parent = target_dir.parent
        if parent.exists():
            if not parent.is_dir():
                raise InstallError(f"'{parent}' should be a directory")
            return
        try:
            parent.mkdir(parents=True)
        except OSError as exc:
            raise InstallError(f"try to create dir '{parent}' failed: {exc}") from exc

    def check_archive(self, archive: pathlib.Path) -> None:
        LOG.info("checking installer file ...")
        if not archive.exists():
            raise InstallError(f"could not open the installer file: '{archive}' does not exist")
        if archive.is_dir():
            raise InstallError(f"'{archive}' not a valid file")
        if archive.suffix != ".xz":
            raise InstallError("installer file should has '.xz' extension")

    def extract(self, archive: pathlib.Path, work_dir: pathlib.Path) -> pathlib.Path:
        LOG.info("extracting installer file ...")
        try:
            if work_dir.exists():
                shutil.rmtree(work_dir)
            work_dir.mkdir(parents=True)
        except OSError as exc:
            raise InstallError(f"prepare temporary directory '{work_dir}' failed: {exc}") from exc

        try:
            run_command(["tar", "-xJvf", str(archive), "-C", str(work_dir)])
        except subprocess.CalledProcessError as exc:
            raise InstallError(f"extract installer file '{archive}' failed: {_stderr_of(exc)}") from exc

        matches = sorted(work_dir.glob("mysql-*"))
        if not matches:
            raise InstallError(f"could not find mysql installer directory from '{work_dir}'")
        return matches[0]

    def prepare_data_dir(self, base_dir: pathlib.Path) -> pathlib.Path:
        account = self.config.account
        data_dir = base_dir / "data"
        try:
            data_dir.mkdir(exist_ok=True)
            uid = pwd.getpwnam(account.user).pw_uid
            gid = grp.getgrnam(account.group).gr_gid
            os.chown(data_dir, uid, gid)
        except (OSError, KeyError) as exc:
            raise InstallError(f"prepare data dir '{data_dir}' failed: {exc}") from exc
        return data_dir

    def initialize(self, base_dir: pathlib.Path) -> str:
        LOG.info("initializing mysql ...")
        cmd = [str(base_dir / "bin" / "mysqld"), "--initialize", f"--user={self.config.account.user}"]
        try:
            result = run_command(cmd)
        except subprocess.CalledProcessError as exc:
            raise InstallError(f"initialize failed: {_stderr_of(exc)}") from exc

        password = extract_temporary_password(result.stdout, result.stderr)
        if password is None:
            raise InstallError(
                "initialize successfully, but could not find generated password, please report to developer"
            )
        self._write_password(base_dir, password)
        return password

    def start_server(self, base_dir: pathlib.Path) -> None:
        LOG.info("starting mysql ...")
        cmd = [str(base_dir / "bin" / "mysqld_safe"), f"--user={self.config.account.user}"]
        LOG.debug("Executing command: %s", " ".join(cmd))
        try:
            subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise InstallError(f"start failed '{' '.join(cmd)}': {exc}") from exc

        server = self.config.server
        if not wait_for_port("127.0.0.1", server.port, server.startup_timeout):
            LOG.warning("mysql is not accepting connections on port %s yet", server.port)
        time.sleep(1)

    def change_password(self, base_dir: pathlib.Path, temporary_password: str) -> None:
        new_password = generate_password()
        LOG.info("changing mysql password ...")
        sql = f"ALTER USER 'root'@'localhost' IDENTIFIED BY '{new_password}';"
        cmd = [
            str(base_dir / "bin" / "mysql"),
            "--host=127.0.0.1",
            f"--port={self.config.server.port}",
            "--user=root",
            f"--password={temporary_password}",
            f"--execute={sql}",
            "--connect-expired-password",
        ]
        for attempt in range(1, PASSWORD_CHANGE_ATTEMPTS + 1):
            try:
                run_command(cmd, redact=(temporary_password, new_password))
                break
            except subprocess.CalledProcessError as exc:
                LOG.warning(
                    "change password attempt %d/%d failed: %s", attempt, PASSWORD_CHANGE_ATTEMPTS, _stderr_of(exc)
                )
                if attempt == PASSWORD_CHANGE_ATTEMPTS:
                    raise InstallError(f"change password failed: {_stderr_of(exc)}") from exc
                time.sleep(1)

        self._password = new_password
        self._write_password(base_dir, new_password)

    def link_client(self, base_dir: pathlib.Path) -> None:
        link = self.config.install.client_link
        if link.exists() or link.is_symlink():
            return
        client = base_dir / "bin" / "mysql"
        try:
            os.symlink(client, link)
        except OSError as exc:
            LOG.warning("failed to create symbolic link '%s' to '%s': %s", link, client, exc)
            return
        LOG.info("created symbolic link '%s' to '%s'", link, client)

    def register_service(self, base_dir: pathlib.Path) -> None:
        systemctl = shutil.which("systemctl")
        if not systemctl:
            LOG.info("systemctl not found; skipping service registration")
            return

        LOG.info("registering systemd service ...")
        unit_path = self.config.service.unit_path
        self.writer.write_file(unit_path, render_service_unit(base_dir, shutil.which("bash")), mode=0o644, backup=False)
        try:
            run_command([systemctl, "enable", unit_path.name], timeout=SERVICE_ENABLE_TIMEOUT)
        except subprocess.CalledProcessError as exc:
            raise InstallError(f"enable {unit_path.name} failed: {_stderr_of(exc)}") from exc

    def _resources(self) -> Optional[ResourceSummary]:
        try:
            return self.inspector.collect()
        except RuntimeError as exc:
            LOG.debug("Memory size unknown, using defaults: %s", exc)
            return None

    def _write_password(self, base_dir: pathlib.Path, password: str) -> None:
        path = base_dir / PASSWORD_FILE_NAME
        try:
            path.write_text(password + "\n", encoding="utf-8")
            os.chmod(path, 0o600)
        except OSError as exc:
            raise InstallError(f"write password failed: {exc}") from exc


def check_target_dir(target_dir: pathlib.Path, remove_empty: bool = False) -> None:
    """Refuse a non-empty ``target_dir``; optionally remove an empty one."""

    LOG.info("checking target dir '%s' ...", target_dir)
    if not target_dir.exists():
        return
    if not target_dir.is_dir() or any(target_dir.iterdir()):
        raise InstallError(
            f"target dir '{target_dir}' already exists and not empty, please check if you are using the directory"
        )
    if remove_empty:
        try:
            target_dir.rmdir()
        except OSError as exc:
            raise InstallError(f"clean target dir '{target_dir}' failed: {exc}") from exc


# --------------------------------------------------------------------------
# CLI


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument(
        "archive",
        nargs="?",
        help="MySQL minimal .tar.xz distribution to install (downloaded when omitted).",
    )
    parser.add_argument("-v", "--version", action="version", version=__version__)
    parser.add_argument(
        "--target-dir",
        type=pathlib.Path,
        help="Installation directory (default: install.target_dir from the configuration).",
    )
    parser.add_argument(
        "--download-dir",
        type=pathlib.Path,
        help="Directory receiving the downloaded archive (default: current directory).",
    )
    parser.add_argument(
        "--config",
        type=pathlib.Path,
        help="Path to a TOML configuration file.",
    )
    parser.add_argument(
        "--no-service",
        action="store_true",
        help="Do not register the mysqld systemd service.",
    )
    parser.add_argument(
        "--verbose",
        action="count",
        default=0,
        help="Show debug output including executed commands.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only report warnings and errors (also enabled by the QUIET environment variable).",
    )
    parser.add_argument(
        "--log-file",
        type=pathlib.Path,
        help="Optional path to write logs in addition to the console output.",
    )
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default="text",
        help="Logging output format (default: text).",
    )
    return parser


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    return build_arg_parser().parse_args(argv)


class _JSONLogFormatter(logging.Formatter):
    """Format log records as JSON objects."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - brief output
        created = _dt.datetime.fromtimestamp(record.created, _dt.timezone.utc)
        payload = {
            "timestamp": format_time("c", created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(
    verbosity: int, log_file: Optional[pathlib.Path], log_format: str, quiet: bool = False
) -> None:
    level = logging.INFO
    if quiet:
        level = logging.WARNING
    elif verbosity >= 1:
        level = logging.DEBUG
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    if log_format == "json":
        formatter: logging.Formatter = _JSONLogFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s: %(message)s", "%Y/%m/%d %H:%M:%S")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose, args.log_file, args.log_format, quiet=args.quiet or "QUIET" in os.environ)

    if args.archive == "version":
        print(__version__)
        return 0

    config = load_setup_config(args.config)
    target_dir = args.target_dir or config.install.target_dir
    installer = MySQLInstaller(config, install_service=not args.no_service)

    try:
        ensure_root()
        check_target_dir(target_dir)
        archive = pathlib.Path(args.archive) if args.archive else installer.download(args.download_dir)
        installer.install_from_file(archive, target_dir)
    except (InstallError, OSError, subprocess.CalledProcessError) as exc:
        LOG.error("install failed: %s", exc)
        return 1

    print(
        "installed successfully\n"
        "=======\n"
        "user: root\n"
        f"password: {installer.password}\n"
        f"dir: {target_dir}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

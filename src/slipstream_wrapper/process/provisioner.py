"""Binary provisioning and permission bootstrap.

Bundled binaries are copied into a writable directory that allows execution
and made executable there. When the native ``chmod`` call is not enough
(e.g. the filesystem ignores it for the current user) an external
``chmod`` command runs as a fallback, optionally through a privileged
prefix such as ``su -c``.
"""

import os
import shutil
import stat
import subprocess
import tempfile
from pathlib import Path

from ..common.exceptions import ProvisionError
from ..common.logging import get_logger
from ..common.utils import join_command, mask_path
from ..config import SupervisorSettings

logger = get_logger(__name__)

EXECUTABLE_MODE = 0o755
KEY_MODE = 0o600


class BinaryProvisioner:
    """Ensures named executables are present and runnable."""

    def __init__(self, settings: SupervisorSettings | None = None):
        self.settings = settings or SupervisorSettings()

    def ensure(self, name: str) -> Path:
        """Return an executable path for ``name``, copying it in if needed.

        Lookup order: bundled asset (copied into ``bin_dir`` when absent or
        when ``always_copy`` is set), an existing copy in ``bin_dir``, then
        the system ``PATH``.

        Args:
            name: Binary name

        Returns:
            Path to an executable file

        Raises:
            ProvisionError: If the binary is missing or cannot be made executable
        """
        target = self.settings.bin_dir / name
        source = self.settings.assets_dir / name if self.settings.assets_dir else None

        if source is not None and source.is_file():
            if self.settings.always_copy or not target.exists():
                self._copy(source, target)
            path = target
        elif target.is_file():
            path = target
        else:
            system_binary = shutil.which(name)
            if system_binary is None:
                raise ProvisionError(
                    f"Binary '{name}' not found in assets, {self.settings.bin_dir} or PATH"
                )
            logger.debug("Using system binary", name=name, path=system_binary)
            return Path(system_binary)

        self._make_executable(path)
        return path

    def fix_key_permissions(self, key_path: str | Path) -> Path:
        """Restrict a private key to owner read/write.

        Raises:
            ProvisionError: If the key does not exist or its mode cannot be fixed
        """
        key_path = Path(key_path)
        if not key_path.is_file():
            raise ProvisionError(f"Key file not found: {mask_path(key_path)}")

        if stat.S_IMODE(key_path.stat().st_mode) & 0o077 == 0:
            return key_path

        try:
            os.chmod(key_path, KEY_MODE)
        except OSError as e:
            logger.warning("Native chmod failed for key", path=mask_path(key_path), error=str(e))

        if stat.S_IMODE(key_path.stat().st_mode) & 0o077:
            self._run_chmod_fallback("600", key_path)
            if stat.S_IMODE(key_path.stat().st_mode) & 0o077:
                raise ProvisionError(f"Cannot restrict permissions on {mask_path(key_path)}")

        logger.info("Key permissions restricted", path=mask_path(key_path))
        return key_path

    def _copy(self, source: Path, target: Path) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
            os.close(fd)
            try:
                shutil.copyfile(source, temp_name)
                os.replace(temp_name, target)
            except BaseException:
                try:
                    os.unlink(temp_name)
                except OSError:
                    pass
                raise
        except OSError as e:
            raise ProvisionError(f"Failed to copy {source.name} into {target.parent}: {e}") from e
        logger.info("Binary copied", name=target.name, path=str(target))

    def _make_executable(self, path: Path) -> None:
        if os.access(path, os.X_OK) and os.access(path, os.R_OK):
            return

        try:
            path.chmod(path.stat().st_mode | EXECUTABLE_MODE)
        except OSError as e:
            logger.warning("Native chmod failed", path=str(path), error=str(e))

        if os.access(path, os.X_OK):
            logger.debug("Executable permission set", path=str(path))
            return

        self._run_chmod_fallback("755", path)
        if not os.access(path, os.X_OK):
            raise ProvisionError(f"Binary is not executable after permission fix: {path}")

    def _run_chmod_fallback(self, mode: str, path: Path) -> None:
        command = ["chmod", mode, str(path)]
        if self.settings.privileged_prefix:
            command = [*self.settings.privileged_prefix, join_command(command)]

        logger.info("Running chmod fallback", command=command[0], mode=mode)
        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.settings.cleanup_timeout * 5,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProvisionError(f"Permission fix command failed for {path.name}: {e}") from e

        if result.returncode != 0:
            logger.warning(
                "chmod fallback returned non-zero",
                returncode=result.returncode,
                output=result.stdout.strip(),
            )

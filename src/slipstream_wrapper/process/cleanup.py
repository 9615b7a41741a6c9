"""Best-effort removal of processes left over from an earlier run."""

import subprocess
from collections.abc import Sequence

from ..common.logging import get_logger
from ..common.utils import join_command

logger = get_logger(__name__)

# Tried in order; a missing tool moves on to the next one.
KILL_COMMANDS: list[list[str]] = [
    ["killall", "-9"],
    ["toybox", "killall", "-9"],
    ["busybox", "killall", "-9"],
    ["pkill", "-9", "-x"],
]


def kill_residual(
    names: Sequence[str],
    privileged_prefix: Sequence[str] = (),
    timeout: float = 1.0,
) -> dict[str, bool]:
    """Kill every process named like one of ``names``.

    Never raises: a non-zero exit usually only means nothing matched.

    Args:
        names: Process names to kill
        privileged_prefix: Optional prefix such as ``["su", "-c"]``
        timeout: Seconds allowed per command

    Returns:
        Mapping of name to whether some kill tool ran for it
    """
    results: dict[str, bool] = {}
    for name in names:
        results[name] = False
        for base in KILL_COMMANDS:
            command = [*base, name]
            if privileged_prefix:
                command = [*privileged_prefix, join_command(command)]
            try:
                completed = subprocess.run(
                    command,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    timeout=timeout,
                    check=False,
                )
            except FileNotFoundError:
                continue
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.warning("Cleanup command failed", command=command[0], name=name, error=str(e))
                continue

            if completed.returncode == 127:
                # Privileged shell could not find the tool.
                continue
            if completed.returncode != 0:
                logger.debug("No residual process matched", name=name, tool=base[0])
            else:
                logger.info("Residual process killed", name=name, tool=base[0])
            results[name] = True
            break
        else:
            logger.warning("No kill tool available for cleanup", name=name)
    return results

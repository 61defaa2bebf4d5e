"""Stop and restart the application or its hosting pool."""
import logging
import os
import subprocess
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence

import psutil
import requests


logger = logging.getLogger('selfupdate_engine')

if sys.platform == 'win32':
    DEFAULT_POOL_COMMAND = ('appcmd', '{action}', 'apppool', '/apppool.name:{name}')
else:
    DEFAULT_POOL_COMMAND = ('systemctl', '{action}', '{name}')

HEALTH_CHECK_INTERVAL = 1.0


class ProcessControlError(Exception):
    """Exception raised when a process-control command fails."""
    pass


def launch_detached(command: Sequence[str], cwd: Optional[Path] = None) -> subprocess.Popen:
    """Start a process that outlives the current one.

    Raises:
        OSError: If the process cannot be started
    """
    kwargs = {}
    if sys.platform == 'win32':
        kwargs['creationflags'] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs['start_new_session'] = True

    return subprocess.Popen(
        [str(part) for part in command],
        cwd=str(cwd) if cwd else None,
        close_fds=True,
        **kwargs
    )


def build_pool_command(action: str, name: str, template: Optional[Sequence[str]] = None,
                       elevate: bool = True) -> List[str]:
    """Build the administrative command for a pool action.

    Args:
        action: 'start' or 'stop'
        name: Pool name
        template: Command template using {action} and {name} placeholders
        elevate: Run the command with elevated privileges

    Returns:
        Command as an argument list
    """
    command = [part.format(action=action, name=name) for part in (template or DEFAULT_POOL_COMMAND)]

    if not elevate:
        return command

    if sys.platform == 'win32':
        arguments = subprocess.list2cmdline(command[1:]).replace("'", "''")
        return [
            'powershell', '-NoProfile', '-NonInteractive', '-Command',
            f"Start-Process -FilePath '{command[0]}' -ArgumentList '{arguments}' "
            f"-Verb RunAs -Wait -WindowStyle Hidden"
        ]

    if os.geteuid() == 0:
        return command
    return ['sudo', '-n'] + command


class ApplicationManager:
    """Controls the lifecycle of the updated application."""

    def __init__(self, pool_command: Optional[Sequence[str]] = None, elevate_pool_command: bool = True,
                 pool_settle_seconds: float = 5.0, startup_timeout_seconds: float = 5.0,
                 health_check_url: Optional[str] = None):
        self.pool_command = pool_command
        self.elevate_pool_command = elevate_pool_command
        self.pool_settle_seconds = pool_settle_seconds
        self.startup_timeout_seconds = startup_timeout_seconds
        self.health_check_url = health_check_url

    def stop_application(self, exe_file_name: str, timeout: Optional[float] = None) -> int:
        """Kill every running instance of an executable.

        Args:
            exe_file_name: Executable file name, extension optional
            timeout: Seconds to wait for each process to exit (None = no limit)

        Returns:
            Number of processes stopped
        """
        process_name = Path(exe_file_name).stem.casefold()
        # Image names are compared whole: "app" or "app.exe", never "app.worker"
        image_names = {process_name, process_name + '.exe', Path(exe_file_name).name.casefold()}
        own_pid = os.getpid()
        stopped = 0

        for process in psutil.process_iter(['pid', 'name']):
            name = process.info.get('name') or ''
            if process.pid == own_pid or name.casefold() not in image_names:
                continue

            try:
                logger.info(f"Stopping running instance of {exe_file_name} (PID: {process.pid})")
                process.kill()
                process.wait(timeout=timeout)
                logger.info(f"Successfully stopped {exe_file_name} (PID: {process.pid})")
                stopped += 1
            except psutil.NoSuchProcess:
                logger.info(f"Process {process.pid} already exited")
                stopped += 1
            except (psutil.Error, OSError) as e:
                logger.error(f"Failed to stop {exe_file_name} (PID: {process.pid}): {e}")

        if not stopped:
            logger.info(f"No running instance of {exe_file_name} found")
        return stopped

    def restart_application(self, exe_path: Path) -> bool:
        """Launch the updated executable and wait until it is ready.

        Args:
            exe_path: Path to the executable

        Returns:
            True if the new instance came up
        """
        exe_path = Path(exe_path)
        logger.info(f"Restarting application: {exe_path}")

        try:
            process = launch_detached([exe_path], cwd=exe_path.parent)
        except OSError as e:
            logger.error(f"Failed to start {exe_path}: {e}")
            return False

        return self.wait_until_ready(process)

    def wait_until_ready(self, process: subprocess.Popen) -> bool:
        """Wait for a started process to signal readiness.

        Without a health check URL the process only has to survive the
        startup window (or exit cleanly within it). With one, the URL must
        answer 200 before the window closes.
        """
        if not self.health_check_url:
            try:
                returncode = process.wait(timeout=self.startup_timeout_seconds)
            except subprocess.TimeoutExpired:
                logger.info(f"Application is running (PID: {process.pid})")
                return True

            if returncode == 0:
                logger.info("Application started and exited cleanly")
                return True
            logger.error(f"Application exited during startup with code {returncode}")
            return False

        deadline = time.monotonic() + self.startup_timeout_seconds
        attempt = 0

        while True:
            attempt += 1
            returncode = process.poll()
            if returncode is not None and returncode != 0:
                logger.error(f"Application exited during startup with code {returncode}")
                return False

            try:
                response = requests.get(self.health_check_url, timeout=HEALTH_CHECK_INTERVAL)
                if response.status_code == 200:
                    logger.info(f"Health check passed: {self.health_check_url}")
                    return True
                logger.debug(f"Health check attempt {attempt}: status {response.status_code}")
            except requests.RequestException as e:
                logger.debug(f"Health check attempt {attempt} failed: {e}")

            if time.monotonic() >= deadline:
                break
            time.sleep(HEALTH_CHECK_INTERVAL)

        logger.error(f"Application did not become ready within {self.startup_timeout_seconds}s")
        return False

    def stop_pool(self, name: str) -> bool:
        """Stop a hosting pool."""
        return self._run_pool_command('stop', name)

    def start_pool(self, name: str) -> bool:
        """Start a hosting pool."""
        return self._run_pool_command('start', name)

    def _run_pool_command(self, action: str, name: str) -> bool:
        command = build_pool_command(action, name, self.pool_command, self.elevate_pool_command)
        logger.info(f"Running {action} for application pool {name}: {' '.join(command)}")

        try:
            try:
                result = subprocess.run(command, capture_output=True, text=True)
            except OSError as e:
                raise ProcessControlError(f"Failed to run pool command: {e}") from e

            if result.stdout:
                logger.debug(f"Pool command output: {result.stdout.strip()}")

            if result.returncode != 0:
                raise ProcessControlError(
                    f"Pool command failed with exit code {result.returncode}: {result.stderr.strip()}"
                )

            logger.info(f"Application pool {name}: {action} completed")
            return True

        except ProcessControlError as e:
            logger.error(f"Failed to {action} application pool {name}: {e}")
            return False

        finally:
            logger.info(f"Waiting {self.pool_settle_seconds}s for application pool {name} to settle")
            time.sleep(self.pool_settle_seconds)

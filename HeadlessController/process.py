#!/usr/bin/env python3

"""
Browser process supervision.

Finds the browser binary, spawns it with the debug flags, keeps its output
pipes drained and tears it down again.
"""

import collections
import logging
import os
import os.path
import shutil
import signal
import subprocess
import sys
import threading
from typing import List, Optional

from .exceptions import BrowserStartupException

IS_WINDOWS = sys.platform == 'win32'
IS_LINUX = sys.platform.startswith('linux')
IS_MACOS = sys.platform == 'darwin'

DEFAULT_BINARIES = {
    "chrome": "google-chrome",
    "firefox": "firefox",
}

# Process image names for the forced kill fallback
IMAGE_NAMES = {
    "chrome": "chrome.exe",
    "firefox": "firefox.exe",
}


def _platform_paths(browser: str) -> List[str]:
    if IS_WINDOWS:
        program_files = os.environ.get("PROGRAMFILES", r"C:\Program Files")
        program_files_x86 = os.environ.get("PROGRAMFILES(X86)", r"C:\Program Files (x86)")
        local_app_data = os.environ.get("LOCALAPPDATA", "")
        if browser == "chrome":
            return [
                os.path.join(program_files_x86, "Google", "Chrome", "Application", "chrome.exe"),
                os.path.join(program_files, "Google", "Chrome", "Application", "chrome.exe"),
                os.path.join(local_app_data, "Google", "Chrome", "Application", "chrome.exe"),
            ]
        return [
            os.path.join(program_files, "Mozilla Firefox", "firefox.exe"),
            os.path.join(program_files_x86, "Mozilla Firefox", "firefox.exe"),
            os.path.join(local_app_data, "Mozilla Firefox", "firefox.exe"),
        ]
    if IS_MACOS:
        if browser == "chrome":
            return ["/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"]
        return ["/Applications/Firefox.app/Contents/MacOS/firefox"]
    if browser == "chrome":
        return ["/usr/bin/google-chrome", "/usr/bin/chromium", "/usr/bin/chromium-browser"]
    return ["/usr/bin/firefox"]


def find_browser_binary(browser: str, binary: Optional[str] = None) -> str:
    """
    Find the browser binary, checking platform-specific locations.

    Args:
        browser: "chrome" or "firefox"
        binary: Configured binary name or path, if any

    Returns:
        Path to the browser binary

    Raises:
        BrowserStartupException: If the binary is not found
    """
    configured = binary or DEFAULT_BINARIES[browser]
    found = shutil.which(configured)
    if found:
        return found
    if binary and os.path.isfile(binary):
        return binary

    for path in _platform_paths(browser):
        if os.path.isfile(path):
            return path

    raise BrowserStartupException("{} binary not found: {}".format(browser.capitalize(), configured))


def _set_pdeathsig():
    """Ask the kernel to kill the browser when we die (Linux only, preexec_fn)."""
    try:
        import ctypes
        PR_SET_PDEATHSIG = 1
        libc = ctypes.CDLL("libc.so.6")
        libc.prctl(PR_SET_PDEATHSIG, signal.SIGTERM)
    except Exception:
        pass  # Not critical if this fails


class ProcessSupervisor:
    """
    Owns one browser subprocess.

    Args:
        cmd: Full command line, binary first
        image_name: Process image name used by the Windows forced kill fallback
        output_lines: How many trailing output lines to keep for error reports
    """

    def __init__(self, cmd: List[str], image_name: Optional[str] = None, output_lines: int = 50):
        self.cmd = cmd
        self.image_name = image_name
        self.process = None
        self.log = logging.getLogger("HeadlessController.Process")

        self._output = collections.deque(maxlen=output_lines)
        self._drain_threads = []

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def recent_output(self) -> str:
        return "\n".join(self._output)

    def launch(self):
        """
        Start the browser.

        Raises:
            BrowserStartupException: If the process can not be spawned
        """
        self.log.info("Starting browser with command: {}".format(' '.join(self.cmd)))

        popen_kwargs = {
            'stdout': subprocess.PIPE,
            'stderr': subprocess.PIPE,
            'stdin': subprocess.DEVNULL,
        }
        if IS_WINDOWS:
            popen_kwargs['creationflags'] = subprocess.CREATE_NEW_PROCESS_GROUP
        elif IS_LINUX:
            popen_kwargs['preexec_fn'] = _set_pdeathsig

        try:
            self.process = subprocess.Popen(self.cmd, **popen_kwargs)
        except OSError as e:
            raise BrowserStartupException("Failed to start browser: {}".format(e))

        for name, stream in (("stdout", self.process.stdout), ("stderr", self.process.stderr)):
            thread = threading.Thread(
                target=self._drain,
                args=(name, stream),
                name="browser-{}-{}".format(name, self.process.pid),
                daemon=True,
            )
            thread.start()
            self._drain_threads.append(thread)

        self.log.info("Browser started (PID: {})".format(self.process.pid))
        return self.process

    def _drain(self, name, stream):
        try:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    self._output.append(line)
                    self.log.debug("[{}] {}".format(name, line))
        except (OSError, ValueError):
            # Pipe closed underneath us during terminate()
            pass

    def check_alive(self):
        """
        Raises:
            BrowserStartupException: If the browser has already exited
        """
        if self.process is not None and self.process.poll() is not None:
            raise BrowserStartupException("Browser exited with status {}: {}".format(
                self.process.returncode, self.recent_output()))

    def terminate(self, kill_timeout: float = 30):
        """Kill the browser, wait for its exit status and close its pipes. Idempotent."""
        process, self.process = self.process, None
        if process is None:
            return

        if process.poll() is None:
            self.log.info("Killing browser process (PID: {})".format(process.pid))
            try:
                process.kill()
            except ProcessLookupError:
                self.log.info("Browser process already terminated")
            try:
                process.wait(timeout=kill_timeout)
            except subprocess.TimeoutExpired:
                self.log.error("Browser did not terminate even after kill (waited {} seconds)".format(kill_timeout))
        else:
            self.log.debug("Browser already exited with status {}".format(process.returncode))

        for stream in (process.stdout, process.stderr):
            if stream is not None:
                try:
                    stream.close()
                except OSError:
                    pass

        for thread in self._drain_threads:
            thread.join(timeout=1)
        self._drain_threads = []

    def force_kill_by_image_name(self):
        """
        Kill every process with our image name (Windows only).

        Firefox on Windows leaves child processes behind after the parent is
        killed. Best effort: failures are logged and ignored.
        """
        if not IS_WINDOWS or not self.image_name:
            return
        try:
            subprocess.run(
                ["taskkill", "/F", "/IM", self.image_name],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError) as e:
            self.log.debug("taskkill for {} failed: {}".format(self.image_name, e))

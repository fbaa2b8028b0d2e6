# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Execution of system processes with output capture and lifecycle management.
"""
import logging
import os
import signal
import subprocess
import threading
from typing import Callable, Dict, IO, List, Optional

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str, str], None]


class ProcessRunner:
    """
    Manages the execution of a single system process.

    stdout and stderr are read line by line on background threads and handed
    to ``on_output``; when ``log_file`` is set every line is also appended
    there.
    """

    def __init__(self, name: str, on_output: Optional[OutputCallback] = None, log_file: Optional[str] = None):
        """
        Initializes the process runner.

        Args:
            name (str): Identifier for the process.
            on_output (Optional[OutputCallback]): Called with (line, stream) for each output line.
            log_file (Optional[str]): Path to a file that receives a copy of the output.
        """
        self.name = name
        self.on_output = on_output
        self.log_file = log_file
        self.process: Optional[subprocess.Popen] = None
        self._readers: List[threading.Thread] = []
        self._log_handle: Optional[IO[str]] = None
        self._log_lock = threading.Lock()

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def start(self, command: List[str], env: Dict[str, str], working_dir: Optional[str] = None):
        """
        Starts the process.

        Args:
            command (List[str]): Command and arguments to execute.
            env (Dict[str, str]): Environment variables for the process.
            working_dir (Optional[str]): Directory to start the process in.

        Raises:
            OSError: If the executable or directory cannot be used.
        """
        if self.log_file:
            log_dir = os.path.dirname(self.log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            self._log_handle = open(self.log_file, "a", encoding="utf-8")

        logger.info("[%s] Starting command: %s", self.name, " ".join(command))

        try:
            self.process = subprocess.Popen(
                command,
                env=env,
                cwd=working_dir,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                # Avoid shell=True for security reasons (CWE-78)
                shell=False,
                # Own process group so stop() reaches the build tool's children
                start_new_session=os.name != "nt",
            )
        except OSError:
            self._close_log()
            raise

        for stream_name, stream in (("stdout", self.process.stdout), ("stderr", self.process.stderr)):
            reader = threading.Thread(
                target=self._pump,
                args=(stream, stream_name),
                name=f"{self.name}-{stream_name}",
                daemon=True,
            )
            reader.start()
            self._readers.append(reader)

    def _pump(self, stream: IO[str], stream_name: str) -> None:
        try:
            for raw in stream:
                line = raw.rstrip("\r\n")
                if self._log_handle is not None:
                    with self._log_lock:
                        if self._log_handle is not None:
                            self._log_handle.write(line + "\n")
                            self._log_handle.flush()
                if self.on_output is not None:
                    self.on_output(line, stream_name)
        except ValueError:
            # stream closed underneath us during shutdown
            pass
        finally:
            stream.close()

    def stop(self, timeout: float = 10) -> Optional[int]:
        """
        Stops the process by sending SIGTERM, followed by SIGKILL if it doesn't stop.

        Args:
            timeout (float): Seconds to wait for termination before killing.

        Returns:
            Optional[int]: The exit code, or None if there was no process.
        """
        if not self.process:
            return None
        if self.process.poll() is None:
            logger.info("[%s] Stopping process %s...", self.name, self.process.pid)
            self._signal(signal.SIGTERM)
            try:
                self.process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning("[%s] Process did not terminate, killing...", self.name)
                self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))
                self.process.wait()
        return self.wait()

    def _signal(self, sig: int) -> None:
        try:
            if os.name != "nt" and hasattr(os, "killpg"):
                os.killpg(os.getpgid(self.process.pid), sig)
            elif sig == signal.SIGTERM:
                self.process.terminate()
            else:
                self.process.kill()
        except ProcessLookupError:
            pass

    def wait(self, timeout: Optional[float] = None) -> int:
        """
        Waits for the process to exit and for its output to be drained.

        Returns:
            int: The exit code (negative signal number on POSIX when killed).
        """
        code = self.process.wait(timeout=timeout)
        for reader in self._readers:
            reader.join(timeout=5)
        self._close_log()
        return code

    def _close_log(self) -> None:
        with self._log_lock:
            if self._log_handle is not None:
                self._log_handle.close()
                self._log_handle = None

    def is_running(self) -> bool:
        """
        Checks if the process is currently running.

        Returns:
            bool: True if running, False otherwise.
        """
        return self.process is not None and self.process.poll() is None

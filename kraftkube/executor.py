"""
Command execution abstraction for kubectl.

Provides a unified interface for running kubectl with consistent error
handling and logging, and a single seam for tests to mock.
"""

import logging
import subprocess
from typing import Any, Dict, List, Optional

from kraftkube.output import get_output

logger = logging.getLogger(__name__)


class CommandExecutor:
    """
    Abstraction for executing shell commands with consistent error handling.

    Args:
        check: If True, raise CalledProcessError on non-zero exit codes
        capture_output: If True, capture stdout and stderr
        kubectl: Name or path of the kubectl binary
    """

    def __init__(self, check: bool = True, capture_output: bool = False, kubectl: str = "kubectl"):
        self.check = check
        self.capture_output = capture_output
        self.kubectl_binary = kubectl

    def run(
        self,
        cmd: List[str],
        env: Optional[Dict[str, str]] = None,
        check: Optional[bool] = None,
        capture_output: Optional[bool] = None,
        **kwargs: Any,
    ) -> subprocess.CompletedProcess:
        """
        Execute a command and return the result.

        Args:
            cmd: Command to execute as a list of strings
            env: Environment variables to set
            check: Override default check behavior
            capture_output: Override default capture_output behavior
            **kwargs: Additional arguments to pass to subprocess.run

        Returns:
            CompletedProcess instance with text stdout, stderr, and returncode

        Raises:
            subprocess.CalledProcessError: If check=True and command fails
            FileNotFoundError: If command executable is not found
        """
        check = check if check is not None else self.check
        capture_output = capture_output if capture_output is not None else self.capture_output
        output = get_output()

        logger.debug(f"Executing command: {' '.join(cmd)}")
        output.verbose(f"Executing: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                env=env,
                check=check,
                capture_output=capture_output,
                text=True,
                **kwargs,
            )
            logger.debug(f"Command completed with return code: {result.returncode}")
            if result.stdout:
                output.verbose(f"Stdout: {result.stdout}")
            return result
        except subprocess.CalledProcessError as e:
            logger.error(f"Command failed: {' '.join(cmd)} (return code {e.returncode})")
            output.error(
                f"Command failed: {' '.join(cmd)}",
                suggestion=f"Return code: {e.returncode}. Check kubectl context and permissions.",
            )
            if e.stderr:
                logger.error(f"Stderr: {e.stderr}")
                output.verbose(f"Stderr: {e.stderr}")
            raise
        except FileNotFoundError:
            logger.error(f"Command not found: {cmd[0]}")
            output.error(
                f"Command not found: {cmd[0]}",
                suggestion=f"Ensure {cmd[0]} is installed and available in your PATH",
            )
            raise

    def kubectl(self, *args: str, namespace: Optional[str] = None, **kwargs: Any) -> subprocess.CompletedProcess:
        """
        Run a kubectl subcommand.

        Args:
            *args: kubectl arguments, e.g. "apply", "-f", "file.yaml"
            namespace: Optional namespace passed as --namespace
            **kwargs: Passed through to run()
        """
        cmd = [self.kubectl_binary, *args]
        if namespace:
            cmd.extend(["--namespace", namespace])
        return self.run(cmd, **kwargs)

    def kubectl_available(self) -> bool:
        """Return True if the kubectl client can be executed."""
        try:
            self.run([self.kubectl_binary, "version", "--client"], check=True, capture_output=True)
        except (FileNotFoundError, subprocess.CalledProcessError):
            return False
        return True


# Default executor instance for convenience
_default_executor = CommandExecutor()


def get_executor() -> CommandExecutor:
    """
    Get the default command executor instance.

    Returns:
        Default CommandExecutor instance
    """
    return _default_executor

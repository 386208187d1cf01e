"""Runtime configuration from environment variables."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from guest_bridge import constants


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with GUEST_BRIDGE_ prefix.
    Example: GUEST_BRIDGE_CONTAINER_NAME=riscv-ci-42
    """

    model_config = SettingsConfigDict(
        env_prefix="GUEST_BRIDGE_",
        extra="ignore",
    )

    # Execution environment
    container_name: str = "riscv-qemu"
    image: str = constants.DEFAULT_IMAGE
    work_dir: Path = Field(default_factory=Path.cwd)  # mounted at /workspace
    log_dir: Path = Path("qemu-logs")  # mounted at /var/log/qemu

    # Guest layout (paths inside the container)
    guest_fifo: str = constants.DEFAULT_GUEST_FIFO
    guest_console_log: str = constants.DEFAULT_CONSOLE_LOG
    pty_path_file: str = constants.DEFAULT_PTY_PATH_FILE

    # Timeouts
    boot_timeout_seconds: int = constants.DEFAULT_BOOT_TIMEOUT_SECONDS
    boot_interval_seconds: int = constants.DEFAULT_BOOT_INTERVAL_SECONDS
    capture_timeout_seconds: float = constants.DEFAULT_CAPTURE_TIMEOUT_SECONDS

    @property
    def host_console_log(self) -> Path:
        """Console log as seen from the host through the log_dir mount."""
        return self.log_dir / Path(self.guest_console_log).name

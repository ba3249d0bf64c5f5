# provisioner/config.py
"""
Static defaults for the Windows update provisioner.

This module defines the well-known remote file locations, the remote
commands used around a restart, and the timing defaults. None of these
values are read directly by the orchestration code: they seed the
settings models in `provisioner.config_models`, where they can be
overridden per target.
"""

# --- Remote well-known paths ---
ELEVATED_PATH_DEFAULT: str = (
    "C:/Windows/Temp/packer-windows-update-elevated.ps1"
)
WINDOWS_UPDATE_PATH_DEFAULT: str = "C:/Windows/Temp/packer-windows-update.ps1"
PENDING_REBOOT_ELEVATED_PATH_DEFAULT: str = (
    "C:/Windows/Temp/packer-windows-update-pending-reboot-elevated.ps1"
)

# --- Remote commands ---
POWERSHELL_COMMAND_PREFIX: str = (
    "PowerShell -ExecutionPolicy Bypass -OutputFormat Text"
)
RESTART_COMMAND_DEFAULT: str = 'shutdown.exe -f -r -t 0 -c "packer restart"'
# Schedules a restart far enough away to be aborted before it fires.
TEST_RESTART_COMMAND_DEFAULT: str = (
    'shutdown.exe -f -r -t 60 -c "packer restart test"'
)
ABORT_TEST_RESTART_COMMAND_DEFAULT: str = "shutdown.exe -a"

# --- Elevation ---
ELEVATED_USERNAME_DEFAULT: str = "SYSTEM"
UPDATE_TASK_NAME_PREFIX: str = "packer-windows-update"
PENDING_REBOOT_TASK_NAME_PREFIX: str = "packer-windows-update-pending-reboot"

# --- Update script parameters ---
UPDATE_LIMIT_DEFAULT: int = 1000

# --- Timing (seconds) ---
RESTART_TIMEOUT_DEFAULT: float = 4 * 60 * 60
RETRY_DELAY_DEFAULT: float = 5.0

# --- Connection ---
SSH_PORT_DEFAULT: int = 22
SSH_CONNECT_TIMEOUT_DEFAULT: float = 30.0
SSH_KEEPALIVE_INTERVAL_DEFAULT: int = 15

LOG_PREFIX_DEFAULT: str = "[WINDOWS-UPDATE]"
ENV_PREFIX: str = "WINDOWS_UPDATE_"

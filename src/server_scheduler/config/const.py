# server_scheduler/config/const.py
from importlib.metadata import version, PackageNotFoundError

# --- Package Constants ---
package_name = "server-scheduler"
executable_name = package_name
app_name_title = package_name.replace("-", " ").title()
app_author = "server-scheduler"
env_name = package_name.replace("-", "_").upper()

# Placeholder replaced by the minutes string in a server's warn command.
WARN_TIME_PLACEHOLDER = "$TIME"

# Session name components (game and moniker) must match this.
SESSION_COMPONENT_PATTERN = r"^[a-z0-9-]+$"


def get_installed_version() -> str:
    try:
        installed_version = version(package_name)
        return installed_version
    except PackageNotFoundError:
        installed_version = "0.0.0"
        return installed_version

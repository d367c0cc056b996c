from .const import (
    package_name,
    executable_name,
    app_name_title,
    env_name,
    get_installed_version,
)
from .settings import Settings

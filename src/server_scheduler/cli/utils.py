# server_scheduler/cli/utils.py
"""Shared helpers for terminal output."""

from colorama import Fore, Style

# Constants for message display
_INFO_PREFIX = Fore.CYAN + "[INFO] " + Style.RESET_ALL
_OK_PREFIX = Fore.GREEN + "[OK] " + Style.RESET_ALL
_WARN_PREFIX = Fore.YELLOW + "[WARN] " + Style.RESET_ALL
_ERROR_PREFIX = Fore.RED + "[ERROR] " + Style.RESET_ALL


def format_server_line(server) -> str:
    """One-line summary of a server for listings."""
    autostart = (
        Fore.GREEN + "autostart" + Style.RESET_ALL
        if server.autostart
        else Fore.YELLOW + "manual" + Style.RESET_ALL
    )
    return (
        f"{server.sid:>4}  {server.session_name:<24} port {server.port:<6} "
        f"{autostart}  {server.description}"
    )

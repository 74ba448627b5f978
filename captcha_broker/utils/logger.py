"""
Structured logging utility for consistent terminal output.

Provides formatted messages with consistent prefixes, colors, and structure.
Every line is flushed immediately so request logs interleave correctly under
a threaded WSGI server.
"""

import sys
from datetime import datetime
from typing import Optional

from ..config import LOG_LEVEL

# ANSI color codes (can be disabled for non-terminal output)
class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'

    # Message type colors
    INFO = '\033[94m'      # Blue
    SUCCESS = '\033[92m'   # Green
    ERROR = '\033[91m'     # Red
    WARNING = '\033[93m'   # Yellow
    DEBUG = '\033[90m'     # Gray

    # Section colors
    SECTION = '\033[95m'   # Magenta


class Logger:
    """Structured logger for terminal output."""

    def __init__(self, module: str = "", use_colors: bool = True, use_timestamp: bool = True,
                 debug_enabled: Optional[bool] = None):
        """
        Initialize logger.

        Args:
            module: Module name prefix (e.g., "GATE", "TASKS")
            use_colors: Enable ANSI color codes
            use_timestamp: Include timestamps in messages
            debug_enabled: Emit debug lines; defaults to LOG_LEVEL == DEBUG
        """
        self.module = module.upper() if module else ""
        self.use_colors = use_colors and sys.stdout.isatty()
        self.use_timestamp = use_timestamp
        if debug_enabled is None:
            debug_enabled = LOG_LEVEL.upper() == "DEBUG"
        self.debug_enabled = debug_enabled

    def _format_prefix(self, level: str, symbol: str) -> str:
        """Format message prefix with module, level, and symbol."""
        parts = []

        if self.use_timestamp:
            timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            parts.append(f"[{timestamp}]")

        if self.module:
            parts.append(f"[{self.module}]")

        parts.append(f"[{level}]")
        parts.append(symbol)

        prefix = " ".join(parts)

        if self.use_colors:
            color_map = {
                "INFO": Colors.INFO,
                "SUCCESS": Colors.SUCCESS,
                "ERROR": Colors.ERROR,
                "WARNING": Colors.WARNING,
                "DEBUG": Colors.DEBUG,
            }
            color = color_map.get(level, Colors.RESET)
            return f"{color}{prefix}{Colors.RESET}"

        return prefix

    def _print(self, prefix: str, message: str, indent: int = 0):
        """Print formatted message with indentation."""
        indent_str = "  " * indent
        print(f"{prefix} {indent_str}{message}", flush=True)

    def info(self, message: str, indent: int = 0):
        prefix = self._format_prefix("INFO", "→")
        self._print(prefix, message, indent)

    def success(self, message: str, indent: int = 0):
        prefix = self._format_prefix("SUCCESS", "✓")
        self._print(prefix, message, indent)

    def error(self, message: str, indent: int = 0):
        prefix = self._format_prefix("ERROR", "✗")
        self._print(prefix, message, indent)

    def warning(self, message: str, indent: int = 0):
        prefix = self._format_prefix("WARNING", "⚠")
        self._print(prefix, message, indent)

    def debug(self, message: str, indent: int = 0):
        """Print debug message (only when debug output is enabled)."""
        if not self.debug_enabled:
            return
        prefix = self._format_prefix("DEBUG", "•")
        self._print(prefix, message, indent)

    def section(self, title: str, char: str = "=", width: int = 60):
        """Print section header."""
        if self.use_colors:
            print(f"\n{Colors.SECTION}{Colors.BOLD}{char * width}{Colors.RESET}")
            print(f"{Colors.SECTION}{Colors.BOLD}  {title}{Colors.RESET}")
            print(f"{Colors.SECTION}{Colors.BOLD}{char * width}{Colors.RESET}\n")
        else:
            print(f"\n{char * width}")
            print(f"  {title}")
            print(f"{char * width}\n")


# Global logger instances for different modules
_api_logger = Logger("API")
_database_logger = Logger("DATABASE")
_gate_logger = Logger("GATE")
_access_logger = Logger("ACCESS")
_binding_logger = Logger("BINDING")
_tasks_logger = Logger("TASKS")
_upstream_logger = Logger("UPSTREAM")
_provision_logger = Logger("PROVISION", use_timestamp=False)

_LOGGERS = {
    "API": _api_logger,
    "DATABASE": _database_logger,
    "GATE": _gate_logger,
    "ACCESS": _access_logger,
    "BINDING": _binding_logger,
    "TASKS": _tasks_logger,
    "UPSTREAM": _upstream_logger,
    "PROVISION": _provision_logger,
}


def get_logger(module: str = "") -> Logger:
    """
    Get logger instance for a module.

    Args:
        module: Module name (e.g., "gate", "tasks")

    Returns:
        Shared Logger instance for known modules, a fresh one otherwise
    """
    module_upper = module.upper()
    if module_upper in _LOGGERS:
        return _LOGGERS[module_upper]
    return Logger(module)

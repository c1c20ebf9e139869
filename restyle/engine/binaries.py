"""
Locate the llama.cpp server executable.

Binaries ship per platform under a bundled root:

    llama-binaries/
        mac-arm64/llama-server
        mac-x64/llama-server
        linux-x64/llama-server
        win-x64/llama-server.exe

The user data directory (LLAMA_BINARIES_DIR) is checked last, both with and
without the platform sub-folder.
"""

import platform
import sys
from pathlib import Path

from restyle.config import BUNDLED_BINARIES_DIR, ENGINE_BINARY_NAME, LLAMA_BINARIES_DIR
from restyle.errors import BinaryMissing
from restyle.logging_config import debug_log


def _is_windows() -> bool:
    return sys.platform.startswith('win')


def _is_mac() -> bool:
    return sys.platform == 'darwin'


def binary_filename() -> str:
    return f"{ENGINE_BINARY_NAME}.exe" if _is_windows() else ENGINE_BINARY_NAME


def platform_dir_name() -> str:
    """Binary sub-folder for the running platform."""
    if _is_mac():
        return 'mac-arm64' if platform.machine().lower() in ('arm64', 'aarch64') else 'mac-x64'
    if _is_windows():
        return 'win-x64'
    return 'linux-x64'


def candidate_paths(bundled_dir: Path = None, user_dir: Path = None) -> list[Path]:
    """
    Every location checked for the engine binary, in priority order.

    The first entry is the primary expected path for this platform.
    """
    bundled_dir = Path(bundled_dir) if bundled_dir is not None else BUNDLED_BINARIES_DIR
    user_dir = Path(user_dir) if user_dir is not None else LLAMA_BINARIES_DIR
    binary = binary_filename()
    primary_dir = platform_dir_name()

    candidates = [bundled_dir / primary_dir / binary]
    if _is_mac():
        other_arch = 'mac-x64' if primary_dir == 'mac-arm64' else 'mac-arm64'
        candidates.append(bundled_dir / other_arch / binary)
    if _is_windows():
        candidates.append(bundled_dir / 'win-x64' / binary)
    else:
        for fallback in ('linux-x64', 'mac-x64', 'mac-arm64'):
            candidates.append(bundled_dir / fallback / binary)
    candidates.append(user_dir / primary_dir / binary)
    candidates.append(user_dir / binary)

    # Preserve order, drop repeats
    seen = set()
    ordered = []
    for path in candidates:
        if path not in seen:
            seen.add(path)
            ordered.append(path)
    return ordered


def resolve_engine_binary(bundled_dir: Path = None, user_dir: Path = None) -> Path:
    """
    First existing engine binary among candidate_paths().

    Raises:
        BinaryMissing: Naming the primary expected path when nothing exists.
    """
    candidates = candidate_paths(bundled_dir, user_dir)
    for path in candidates:
        if path.is_file():
            debug_log(f"[ENGINE] Found {binary_filename()} at: {path}")
            return path

    primary = candidates[0]
    user_dir = Path(user_dir) if user_dir is not None else LLAMA_BINARIES_DIR
    hint = f"Expected at: {user_dir / platform_dir_name() / binary_filename()}"
    debug_log(f"[ENGINE] No {binary_filename()} found, primary path was: {primary}")
    raise BinaryMissing(primary, hint=hint)

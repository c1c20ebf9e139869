"""
Local Model Store

Owns the on-disk layout of installed models:

    <models>/base-models/<sanitized repo>/  info.json, README.md, model.gguf, installed.json
    <models>/voices/<sanitized repo>/       info.json, README.md, adapter.gguf,
                                            system_prompt.txt, [styleguide.txt], installed.json

The primary weight file is the authoritative "installed" signal; the
installed.json manifest only records revision metadata for update checks.
Verification is advisory and polled often, so it returns a structured
result instead of raising.
"""

import json
import re
import shutil
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

import psutil

from restyle.catalog import (
    MODEL_TYPE_BASE,
    MODEL_TYPE_STYLE,
    normalize_model_type,
    primary_file_for,
)
from restyle.config import (
    ADAPTER_WEIGHTS_FILE,
    BASE_WEIGHTS_FILE,
    INFO_FILE,
    INSTALL_MANIFEST_FILE,
    MIN_ADAPTER_WEIGHTS_BYTES,
    MIN_BASE_WEIGHTS_BYTES,
    MODELS_DIR,
    STYLEGUIDE_FILE,
    SYSTEM_PROMPT_FILE,
)
from restyle.errors import InvalidRepo, ModelStructureInvalid
from restyle.logging_config import debug_log, warning

_UNSAFE_REPO_CHARS = re.compile(r'[^a-zA-Z0-9._-]')


def sanitize_repo(repo: str) -> str:
    """Folder name for a repo id: every char outside [a-zA-Z0-9._-] becomes '_'."""
    return _UNSAFE_REPO_CHARS.sub('_', repo)


@dataclass
class StoreResult:
    """Outcome of a verify/delete call: ok, or an error {code, message}."""
    ok: bool
    error: dict | None = None

    @classmethod
    def failure(cls, message: str, code: str = ModelStructureInvalid.code) -> "StoreResult":
        return cls(ok=False, error={'code': code, 'message': message})


@dataclass
class LocalModel:
    """One installed (or partially installed) model folder."""
    id: str
    type: str
    repo: str
    path: str
    verified: bool
    revision: str | None = None
    context_window: int | None = None
    base_repo: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StorageStats:
    """Model counts and bytes on disk, per kind."""
    base_count: int = 0
    base_bytes: int = 0
    style_count: int = 0
    style_bytes: int = 0

    @property
    def total_bytes(self) -> int:
        return self.base_bytes + self.style_bytes


@dataclass
class DiskSpace:
    free_bytes: int
    total_bytes: int


@dataclass
class StyleArtifacts:
    """Paths of an installed style model's files."""
    folder: Path
    adapter: Path
    system_prompt: Path
    styleguide: Path | None = None


def _read_json(path: Path):
    with open(path, encoding='utf-8') as f:
        return json.load(f)


def _folder_size(root: Path) -> int:
    if not root.exists():
        return 0
    if root.is_file():
        return root.stat().st_size
    total = 0
    for p in root.rglob('*'):
        try:
            if p.is_file():
                total += p.stat().st_size
        except OSError:
            continue
    return total


class ModelStore:
    """
    Filesystem view of installed base and style models.

    Args:
        models_dir: Root of the model layout (defaults to config.MODELS_DIR).
    """

    def __init__(self, models_dir: Path = MODELS_DIR):
        self.models_dir = Path(models_dir)
        self.bases_dir = self.models_dir / "base-models"
        self.voices_dir = self.models_dir / "voices"
        self.bases_dir.mkdir(parents=True, exist_ok=True)
        self.voices_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def type_dir(self, model_type: str) -> Path:
        return self.voices_dir if model_type == MODEL_TYPE_STYLE else self.bases_dir

    def folder_for(self, repo: str, model_type: str) -> Path:
        return self.type_dir(model_type) / sanitize_repo(repo)

    def primary_path(self, repo: str, model_type: str) -> Path:
        return self.folder_for(repo, model_type) / primary_file_for(model_type)

    def is_installed(self, repo: str, model_type: str) -> bool:
        return self.primary_path(repo, model_type).is_file()

    # ------------------------------------------------------------------
    # Install manifest
    # ------------------------------------------------------------------

    def write_manifest(self, repo: str, model_type: str, revision: str | None) -> Path:
        """Write installed.json for a fully downloaded model."""
        path = self.folder_for(repo, model_type) / INSTALL_MANIFEST_FILE
        manifest = {
            'repo': repo,
            'installedRevision': revision,
            'installedAt': datetime.now(timezone.utc).isoformat(),
            'type': model_type,
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(manifest, f, indent=2)
        return path

    def read_manifest(self, repo: str, model_type: str) -> dict | None:
        path = self.folder_for(repo, model_type) / INSTALL_MANIFEST_FILE
        try:
            data = _read_json(path)
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def read_info(self, repo: str, model_type: str) -> dict | None:
        path = self.folder_for(repo, model_type) / INFO_FILE
        try:
            data = _read_json(path)
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Listing and stats
    # ------------------------------------------------------------------

    def _list_dir(self, model_type: str) -> list[LocalModel]:
        root = self.type_dir(model_type)
        entries = []
        if not root.is_dir():
            return entries
        for folder in sorted(p for p in root.iterdir() if p.is_dir()):
            info = None
            installed = None
            try:
                info = _read_json(folder / INFO_FILE)
            except (OSError, ValueError):
                pass
            try:
                installed = _read_json(folder / INSTALL_MANIFEST_FILE)
            except (OSError, ValueError):
                pass
            info = info if isinstance(info, dict) else {}
            installed = installed if isinstance(installed, dict) else {}
            context_window = info.get('contextWindow')
            base_repo = info.get('baseModelRepo') if model_type == MODEL_TYPE_STYLE else None
            entries.append(LocalModel(
                id=folder.name,
                type=model_type,
                repo=installed.get('repo') or folder.name,
                path=str(folder),
                verified=(folder / primary_file_for(model_type)).is_file(),
                revision=installed.get('installedRevision'),
                context_window=context_window if isinstance(context_window, int) else None,
                base_repo=base_repo if isinstance(base_repo, str) else None,
            ))
        return entries

    def list_installed(self) -> dict[str, list[LocalModel]]:
        """All local model folders: {'bases': [...], 'voices': [...]}."""
        return {
            'bases': self._list_dir(MODEL_TYPE_BASE),
            'voices': self._list_dir(MODEL_TYPE_STYLE),
        }

    def stats(self) -> StorageStats:
        stats = StorageStats()
        for folder in (p for p in self.bases_dir.iterdir() if p.is_dir()):
            stats.base_count += 1
            stats.base_bytes += _folder_size(folder)
        for folder in (p for p in self.voices_dir.iterdir() if p.is_dir()):
            stats.style_count += 1
            stats.style_bytes += _folder_size(folder)
        return stats

    def disk_space(self) -> DiskSpace:
        usage = psutil.disk_usage(str(self.models_dir))
        return DiskSpace(free_bytes=usage.free, total_bytes=usage.total)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _detect_type(self, repo: str) -> str | None:
        style_folder = self.folder_for(repo, MODEL_TYPE_STYLE)
        base_folder = self.folder_for(repo, MODEL_TYPE_BASE)
        if (style_folder / ADAPTER_WEIGHTS_FILE).exists():
            return MODEL_TYPE_STYLE
        if (base_folder / BASE_WEIGHTS_FILE).exists():
            return MODEL_TYPE_BASE
        # Fall back to what info.json claims
        for model_type in (MODEL_TYPE_STYLE, MODEL_TYPE_BASE):
            info = self.read_info(repo, model_type)
            if info and normalize_model_type(info.get('type')) == model_type:
                return model_type
        return None

    def verify(self, repo) -> StoreResult:
        """
        Check that a model's artifacts are complete and consistent.

        Never raises: every problem is reported as
        StoreResult(ok=False, error={'code', 'message'}).
        """
        try:
            if not repo or not isinstance(repo, str) or '/' not in repo:
                return StoreResult.failure(f"Invalid repo format: {repo!s}")
            if not (self.folder_for(repo, MODEL_TYPE_STYLE).exists()
                    or self.folder_for(repo, MODEL_TYPE_BASE).exists()):
                return StoreResult.failure(f"Model not found for {repo}")

            model_type = self._detect_type(repo)
            if model_type == MODEL_TYPE_BASE:
                return self._verify_base(repo)
            if model_type == MODEL_TYPE_STYLE:
                return self._verify_style(repo)
            return StoreResult.failure("Unable to determine model type")
        except Exception as e:
            warning(f"[STORE] verify {repo} failed unexpectedly: {e}")
            return StoreResult.failure(str(e) or "Verify failed", code="UNKNOWN")

    def _verify_file(self, path: Path, min_bytes: int) -> StoreResult | None:
        if not path.exists():
            return StoreResult.failure(f"Missing {path.name}")
        try:
            st = path.stat()
        except OSError as e:
            return StoreResult.failure(f"Cannot stat {path.name}: {e}")
        if not path.is_file() or st.st_size < min_bytes:
            return StoreResult.failure(f"{path.name} too small" if min_bytes > 1 else f"{path.name} empty")
        return None

    def _verify_base(self, repo: str) -> StoreResult:
        folder = self.folder_for(repo, MODEL_TYPE_BASE)
        problem = self._verify_file(folder / BASE_WEIGHTS_FILE, MIN_BASE_WEIGHTS_BYTES)
        if problem:
            return problem
        info_path = folder / INFO_FILE
        if info_path.exists():
            try:
                info = _read_json(info_path)
            except ValueError as e:
                return StoreResult.failure(f"Invalid {INFO_FILE}: {e}")
            declared = info.get('type') if isinstance(info, dict) else None
            if declared and normalize_model_type(declared) != MODEL_TYPE_BASE:
                return StoreResult.failure(f"{INFO_FILE} type mismatch")
        return StoreResult(ok=True)

    def _verify_style(self, repo: str) -> StoreResult:
        folder = self.folder_for(repo, MODEL_TYPE_STYLE)
        problem = self._verify_file(folder / ADAPTER_WEIGHTS_FILE, MIN_ADAPTER_WEIGHTS_BYTES)
        if problem:
            return problem
        problem = self._verify_file(folder / SYSTEM_PROMPT_FILE, 1)
        if problem:
            return problem
        info_path = folder / INFO_FILE
        if not info_path.exists():
            return StoreResult.failure(f"Missing {INFO_FILE}")
        try:
            info = _read_json(info_path)
        except ValueError as e:
            return StoreResult.failure(f"Invalid {INFO_FILE}: {e}")
        if not isinstance(info, dict):
            return StoreResult.failure(f"Invalid {INFO_FILE}: not an object")
        if info.get('type') and normalize_model_type(info['type']) != MODEL_TYPE_STYLE:
            return StoreResult.failure(f"{INFO_FILE} type mismatch")
        if not isinstance(info.get('baseModelRepo'), str) or not info['baseModelRepo']:
            return StoreResult.failure(f"{INFO_FILE} missing baseModelRepo")
        return StoreResult(ok=True)

    # ------------------------------------------------------------------
    # Style artifacts
    # ------------------------------------------------------------------

    def ensure_style_installed(self, repo: str) -> StyleArtifacts:
        """
        Return the paths of an installed style model.

        Raises:
            ModelStructureInvalid: If the adapter or system prompt is missing.
        """
        folder = self.folder_for(repo, MODEL_TYPE_STYLE)
        adapter = folder / ADAPTER_WEIGHTS_FILE
        system_prompt = folder / SYSTEM_PROMPT_FILE
        if not adapter.is_file():
            raise ModelStructureInvalid(f"Style not installed: missing {ADAPTER_WEIGHTS_FILE} for {repo}")
        if not system_prompt.is_file():
            raise ModelStructureInvalid(f"Style not installed: missing {SYSTEM_PROMPT_FILE} for {repo}")
        styleguide = folder / STYLEGUIDE_FILE
        return StyleArtifacts(
            folder=folder,
            adapter=adapter,
            system_prompt=system_prompt,
            styleguide=styleguide if styleguide.is_file() else None,
        )

    def read_style_prompt(self, repo: str) -> tuple[str | None, str]:
        """
        Read a style's seed prompt and optional styleguide.

        Returns:
            (system_prompt or None if absent, styleguide or '')
        """
        folder = self.folder_for(repo, MODEL_TYPE_STYLE)
        prompt = None
        styleguide = ''
        prompt_path = folder / SYSTEM_PROMPT_FILE
        if prompt_path.is_file():
            prompt = prompt_path.read_text(encoding='utf-8')
        guide_path = folder / STYLEGUIDE_FILE
        if guide_path.is_file():
            styleguide = guide_path.read_text(encoding='utf-8')
            debug_log(f"[STORE] Found {STYLEGUIDE_FILE} for {repo}")
        return prompt, styleguide

    def local_base_repo(self, style_repo: str) -> str | None:
        """baseModelRepo recorded in an installed style's info.json, if any."""
        info = self.read_info(style_repo, MODEL_TYPE_STYLE)
        base = info.get('baseModelRepo') if info else None
        return base if isinstance(base, str) and base else None

    # ------------------------------------------------------------------
    # Updates and deletion
    # ------------------------------------------------------------------

    def check_update(self, repo: str, model_type: str, latest_revision: str | None) -> bool:
        """True if an installed model's manifest revision differs from latest_revision."""
        manifest = self.read_manifest(repo, model_type)
        if not manifest or not latest_revision:
            return False
        return manifest.get('installedRevision') != latest_revision

    def delete(self, repo, model_type: str = None) -> StoreResult:
        """
        Remove a model folder.

        Without model_type, the style folder is preferred over the base
        folder when both exist.
        """
        if not repo or not isinstance(repo, str) or '/' not in repo:
            return StoreResult.failure(str(InvalidRepo(repo)), code="UNKNOWN")
        if model_type:
            folder = self.folder_for(repo, normalize_model_type(model_type) or MODEL_TYPE_BASE)
        else:
            folder = None
            for candidate in (MODEL_TYPE_STYLE, MODEL_TYPE_BASE):
                if self.folder_for(repo, candidate).exists():
                    folder = self.folder_for(repo, candidate)
                    break
            if folder is None:
                return StoreResult.failure(f"Model not found: {repo}", code="UNKNOWN")
        try:
            shutil.rmtree(folder, ignore_errors=False)
        except FileNotFoundError:
            pass
        except OSError as e:
            return StoreResult.failure(str(e) or "Delete failed", code="UNKNOWN")
        debug_log(f"[STORE] Deleted {folder}")
        return StoreResult(ok=True)

"""
Tests for the local model store.

Weight files are created sparse (truncate) so the size thresholds can be
met without writing real data.
"""

import json

import pytest

from restyle.config import MIN_ADAPTER_WEIGHTS_BYTES, MIN_BASE_WEIGHTS_BYTES
from restyle.errors import ModelStructureInvalid
from restyle.library import sanitize_repo

BASE = "Rewritelikeme/base-7b"
STYLE = "Rewritelikeme/noir"


def sparse(path, size):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'wb') as f:
        f.truncate(size)


def install_base(store, size=MIN_BASE_WEIGHTS_BYTES, info=None):
    folder = store.folder_for(BASE, "base")
    sparse(folder / "model.gguf", size)
    if info is not None:
        (folder / "info.json").write_text(json.dumps(info))
    return folder


def install_style(store, info=None, prompt="Be terse.", adapter_size=MIN_ADAPTER_WEIGHTS_BYTES):
    folder = store.folder_for(STYLE, "style")
    sparse(folder / "adapter.gguf", adapter_size)
    if prompt is not None:
        (folder / "system_prompt.txt").write_text(prompt)
    if info is None:
        info = {'type': 'style', 'baseModelRepo': BASE, 'contextWindow': 4096}
    (folder / "info.json").write_text(json.dumps(info))
    return folder


class TestLayout:
    """Folder naming."""

    def test_sanitize_repo(self):
        """Repo ids become safe folder names."""
        assert sanitize_repo("Org/My Model:v2") == "Org_My_Model_v2"

    def test_folders_per_type(self, store):
        """Bases and styles live in separate folders."""
        assert store.folder_for(BASE, "base").parent == store.bases_dir
        assert store.folder_for(STYLE, "style").parent == store.voices_dir
        assert store.folder_for(STYLE, "style").name == "Rewritelikeme_noir"

    def test_is_installed_follows_primary_file(self, store):
        """Installed means the primary file exists."""
        assert not store.is_installed(BASE, "base")
        install_base(store, size=10)
        assert store.is_installed(BASE, "base")


class TestVerify:
    """Structured verification results."""

    def test_valid_base(self, store):
        """A complete base verifies."""
        install_base(store, info={'type': 'base'})
        assert store.verify(BASE).ok

    def test_base_too_small(self, store):
        """Undersized weights fail verification."""
        install_base(store, size=MIN_BASE_WEIGHTS_BYTES - 1)
        result = store.verify(BASE)
        assert not result.ok
        assert result.error['code'] == "MODEL_STRUCTURE_INVALID"
        assert "too small" in result.error['message']

    def test_base_type_mismatch(self, store):
        """A base whose info.json says style fails."""
        install_base(store, info={'type': 'style'})
        assert not store.verify(BASE).ok

    def test_valid_style(self, store):
        """A complete style verifies."""
        install_style(store)
        assert store.verify(STYLE).ok

    def test_style_needs_base_repo(self, store):
        """A style must name its base repo."""
        install_style(store, info={'type': 'style'})
        result = store.verify(STYLE)
        assert not result.ok
        assert "baseModelRepo" in result.error['message']

    def test_style_needs_system_prompt(self, store):
        """A style must ship a seed prompt."""
        install_style(store, prompt=None)
        assert "system_prompt.txt" in store.verify(STYLE).error['message']

    def test_empty_system_prompt(self, store):
        """An empty seed prompt fails verification."""
        install_style(store, prompt="")
        assert not store.verify(STYLE).ok

    def test_missing_model(self, store):
        """A model that is not on disk fails verification."""
        result = store.verify("Rewritelikeme/nothing")
        assert not result.ok
        assert "not found" in result.error['message']

    @pytest.mark.parametrize("repo", [None, "", "no-slash"])
    def test_invalid_repo_never_raises(self, store, repo):
        """Bad repo ids give a failed result, not an exception."""
        assert not store.verify(repo).ok


class TestManifestAndListing:
    """installed.json, listing and update checks."""

    def test_manifest_round_trip(self, store):
        """installed.json reads back what was written."""
        install_base(store, size=10)
        store.write_manifest(BASE, "base", "rev1")
        manifest = store.read_manifest(BASE, "base")
        assert manifest['installedRevision'] == "rev1"
        assert 'installedAt' in manifest

    def test_check_update(self, store):
        """An update is flagged when the revision differs."""
        install_base(store, size=10)
        assert store.check_update(BASE, "base", "rev1") is False
        store.write_manifest(BASE, "base", "rev1")
        assert store.check_update(BASE, "base", "rev1") is False
        assert store.check_update(BASE, "base", "rev2") is True
        assert store.check_update(BASE, "base", None) is False

    def test_list_installed(self, store):
        """Installed models are listed per type."""
        install_base(store, size=10)
        store.write_manifest(BASE, "base", "rev1")
        install_style(store)
        listing = store.list_installed()
        assert [m.repo for m in listing['bases']] == [BASE]
        assert listing['bases'][0].revision == "rev1"
        assert listing['voices'][0].base_repo == BASE
        assert listing['voices'][0].context_window == 4096
        assert listing['voices'][0].verified

    def test_stats(self, store):
        """Stats count models and bytes."""
        install_base(store, size=10)
        install_style(store, adapter_size=20, prompt="abc")
        stats = store.stats()
        assert stats.base_count == 1
        assert stats.base_bytes == 10
        assert stats.style_count == 1
        assert stats.total_bytes > 30

    def test_disk_space(self, store):
        """Disk space reports total and free bytes."""
        space = store.disk_space()
        assert space.total_bytes >= space.free_bytes > 0


class TestStyleArtifacts:
    """Style prompt and install checks."""

    def test_ensure_style_installed(self, store):
        """An installed style returns its artifact paths."""
        folder = install_style(store)
        artifacts = store.ensure_style_installed(STYLE)
        assert artifacts.adapter == folder / "adapter.gguf"
        assert artifacts.styleguide is None

    def test_ensure_style_installed_missing_adapter(self, store):
        """A style without its adapter raises."""
        with pytest.raises(ModelStructureInvalid):
            store.ensure_style_installed(STYLE)

    def test_read_style_prompt_with_styleguide(self, store):
        """The seed prompt and styleguide are read together."""
        folder = install_style(store)
        (folder / "styleguide.txt").write_text("Short sentences.")
        assert store.read_style_prompt(STYLE) == ("Be terse.", "Short sentences.")

    def test_read_style_prompt_absent(self, store):
        """A missing style gives no prompt."""
        assert store.read_style_prompt(STYLE) == (None, '')

    def test_local_base_repo(self, store):
        """The base repo is read from the style's info.json."""
        install_style(store)
        assert store.local_base_repo(STYLE) == BASE
        assert store.local_base_repo("Rewritelikeme/other") is None


class TestDelete:
    """Removing model folders."""

    def test_delete_prefers_style_folder(self, store):
        """Delete without a type removes the style first."""
        install_style(store)
        sparse(store.folder_for(STYLE, "base") / "model.gguf", 10)
        assert store.delete(STYLE).ok
        assert not store.folder_for(STYLE, "style").exists()
        assert store.folder_for(STYLE, "base").exists()

    def test_delete_with_type(self, store):
        """Delete with a type removes only that folder."""
        install_base(store, size=10)
        assert store.delete(BASE, "base").ok
        assert not store.folder_for(BASE, "base").exists()

    def test_delete_missing(self, store):
        """Deleting a missing model fails."""
        assert not store.delete(BASE).ok

    def test_delete_invalid_repo(self, store):
        """Deleting a bad repo id fails."""
        assert not store.delete("bad").ok

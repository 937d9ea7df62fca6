"""
Property-based tests for the Manifest module.

Uses Hypothesis for property-based testing to verify default fallback,
field backfill and save/load behavior.
"""

import json
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from subledger.config import DEFAULT_PRIMARY_GATEWAYS
from subledger.exceptions import PersistenceError
from subledger.manifest import Manifest, ManifestStore


@st.composite
def roots_strategy(draw) -> dict[str, str]:
    """Generate domain -> content id mappings."""
    names = draw(st.lists(
        st.text(alphabet=st.sampled_from("abcdefghijklmnop"), min_size=1, max_size=10),
        max_size=8,
        unique=True,
    ))
    return {
        f"{name}.com": "Qm" + draw(st.text(alphabet=st.sampled_from("abcdef0123456789"), min_size=8, max_size=20))
        for name in names
    }


class TestManifestDefaults:
    """Absent and malformed files fall back to defaults."""

    def test_absent_file_yields_defaults(self, tmp_path: Path) -> None:
        manifest = ManifestStore(tmp_path / "manifest.json").load()

        assert manifest.roots == {}
        assert manifest.gateways == DEFAULT_PRIMARY_GATEWAYS
        assert manifest.index_cid is None

    @pytest.mark.parametrize("content", [
        "{not json",
        "[]",
        '"a string"',
        "",
    ])
    def test_malformed_file_yields_defaults(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "manifest.json"
        path.write_text(content, encoding="utf-8")

        manifest = ManifestStore(path).load()
        assert manifest.roots == {}
        assert manifest.gateways == DEFAULT_PRIMARY_GATEWAYS

    def test_missing_fields_are_backfilled(self, tmp_path: Path) -> None:
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps({"roots": {"example.com": {"shard_cid": "QmX"}}}))

        manifest = ManifestStore(path).load()
        assert manifest.cid_for("example.com") == "QmX"
        assert manifest.gateways == DEFAULT_PRIMARY_GATEWAYS

    def test_invalid_entries_are_dropped(self, tmp_path: Path) -> None:
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps({
            "roots": {"good.com": {"shard_cid": "QmGood"}, "bad.com": "QmBad", "worse.com": {}},
            "gateways": [],
            "index_cid": 42,
        }))

        manifest = ManifestStore(path).load()
        assert set(manifest.roots) == {"good.com"}
        assert manifest.gateways == DEFAULT_PRIMARY_GATEWAYS
        assert manifest.index_cid is None

    @pytest.mark.parametrize("cid", ["Qm\u0000bad", "Qm bad", "Qm/../bad", "Qm?x=1", "Qm\u2028bad", ""])
    def test_unsafe_content_ids_are_dropped(self, tmp_path: Path, cid: str) -> None:
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps({
            "roots": {"good.com": {"shard_cid": "QmGood"}, "bad.com": {"shard_cid": cid}},
            "index_cid": cid,
        }))

        manifest = ManifestStore(path).load()
        assert set(manifest.roots) == {"good.com"}
        assert manifest.index_cid is None

    def test_cid_for_unknown_domain_is_empty(self) -> None:
        assert Manifest().cid_for("unknown.com") == ""


class TestManifestSaveLoad:
    """Saved manifests load back unchanged."""

    @given(roots=roots_strategy(), index_cid=st.one_of(st.none(), st.just("QmIndex")))
    @settings(max_examples=50)
    def test_saved_manifest_loads_back(self, roots: dict[str, str], index_cid) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ManifestStore(Path(tmpdir) / "nested" / "manifest.json")
            manifest = Manifest(gateways=["https://gw.example/ipfs/"], index_cid=index_cid)
            for domain, cid in roots.items():
                manifest.set_cid(domain, cid)

            store.save(manifest)
            loaded = store.load()

            assert {d: loaded.cid_for(d) for d in loaded.roots} == roots
            assert loaded.gateways == ["https://gw.example/ipfs/"]
            assert loaded.index_cid == index_cid

    def test_file_uses_shard_cid_layout(self, tmp_path: Path) -> None:
        path = tmp_path / "manifest.json"
        manifest = Manifest()
        manifest.set_cid("example.com", "QmA")
        ManifestStore(path).save(manifest)

        data = json.loads(path.read_text())
        assert data["roots"] == {"example.com": {"shard_cid": "QmA"}}
        assert data["gateways"] == DEFAULT_PRIMARY_GATEWAYS
        assert "index_cid" not in data

    def test_save_failure_raises_persistence_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("file")

        with pytest.raises(PersistenceError):
            ManifestStore(blocker / "manifest.json").save(Manifest())

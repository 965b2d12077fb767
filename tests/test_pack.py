"""Tests for the pack orchestrator."""

import pytest

from contextpack_cli.errors import EmptyBundleError, IntegrityError, ResolutionError
from contextpack_cli.models import PackOptions
from contextpack_cli.orchestrator import PackOrchestrator, pack, pack_all
from contextpack_cli.storage import MemoryContractProvider


class TestPack:
    """Tests for pack()."""

    @pytest.mark.asyncio
    async def test_chain_bundle(self, chain_project):
        bundle = await pack("src/A.tsx", chain_project.manifest(), PackOptions(depth=2), chain_project.root)

        assert bundle.entry_id == "src/A.tsx"
        assert bundle.node_ids == ["src/A.tsx", "src/B.tsx", "src/C.tsx"]
        assert list(bundle.edges) == [("src/A.tsx", "src/B.tsx"), ("src/B.tsx", "src/C.tsx")]
        assert len(bundle.missing) == 1
        missing = bundle.missing[0]
        assert missing.name == "left-pad"
        assert missing.referenced_by == "src/A.tsx"
        assert missing.package_name == "left-pad"
        assert missing.version == "^1.3.0"

    @pytest.mark.asyncio
    async def test_resolves_bare_name(self, chain_project):
        bundle = await pack("A", chain_project.manifest(), PackOptions(depth=0), chain_project.root)
        assert bundle.node_ids == ["src/A.tsx"]
        assert bundle.edges == ()

    @pytest.mark.asyncio
    async def test_idempotent(self, chain_project):
        manifest = chain_project.manifest()
        first = await pack("src/A.tsx", manifest, PackOptions(depth=2), chain_project.root)
        second = await pack("src/A.tsx", manifest, PackOptions(depth=2), chain_project.root)
        assert first.bundle_hash == second.bundle_hash

    @pytest.mark.asyncio
    async def test_edges_reference_nodes(self, chain_project):
        bundle = await pack("src/A.tsx", chain_project.manifest(), PackOptions(depth=1), chain_project.root)
        ids = set(bundle.node_ids)
        for source, target in bundle.edges:
            assert source in ids and target in ids

    @pytest.mark.asyncio
    async def test_unknown_entry(self, chain_project):
        with pytest.raises(ResolutionError) as exc_info:
            await pack("Sidebar", chain_project.manifest(), PackOptions(), chain_project.root)
        assert exc_info.value.candidates == ["src/A.tsx", "src/B.tsx", "src/C.tsx"]
        assert "Component not found: Sidebar" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_candidates_capped_at_five(self, project):
        for i in range(7):
            project.add(f"src/W{i}.tsx")
        with pytest.raises(ResolutionError) as exc_info:
            await pack("Nope", project.manifest(), PackOptions(), project.root)
        assert len(exc_info.value.candidates) == 5
        assert "... and 2 more" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_no_contracts_at_all(self, chain_project):
        with pytest.raises(EmptyBundleError):
            await pack(
                "src/A.tsx", chain_project.manifest(), PackOptions(depth=2), chain_project.root,
                provider=MemoryContractProvider({}),
            )

    @pytest.mark.asyncio
    async def test_in_memory_contracts_preferred(self, chain_project):
        options = PackOptions(depth=2).with_contracts(chain_project.contracts)
        bundle = await pack(
            "src/A.tsx", chain_project.manifest(), options, chain_project.root,
            provider=MemoryContractProvider({}),
        )
        assert len(bundle.nodes) == 3


class TestMissingContracts:
    """Load-step behavior when a sidecar is absent."""

    @pytest.mark.asyncio
    async def test_strict_raises(self, chain_project):
        manifest = chain_project.manifest()
        chain_project.drop_sidecar("src/C.tsx")
        with pytest.raises(IntegrityError) as exc_info:
            await pack("src/A.tsx", manifest, PackOptions(depth=2, strict=True), chain_project.root)
        assert exc_info.value.entry_id == "src/C.tsx"

    @pytest.mark.asyncio
    async def test_disallowed_missing_is_recorded(self, chain_project):
        manifest = chain_project.manifest()
        chain_project.drop_sidecar("src/C.tsx")
        bundle = await pack("src/A.tsx", manifest, PackOptions(depth=2, allow_missing=False), chain_project.root)

        assert bundle.node_ids == ["src/A.tsx", "src/B.tsx"]
        assert "src/C.tsx" in [m.name for m in bundle.missing]

    @pytest.mark.asyncio
    async def test_allowed_missing_dropped_silently(self, chain_project):
        manifest = chain_project.manifest()
        chain_project.drop_sidecar("src/C.tsx")
        bundle = await pack("src/A.tsx", manifest, PackOptions(depth=2), chain_project.root)

        assert bundle.node_ids == ["src/A.tsx", "src/B.tsx"]
        assert [m.name for m in bundle.missing] == ["left-pad"]


class TestHashLockedPack:
    """Validate-step behavior."""

    @pytest.mark.asyncio
    async def test_stale_contract_aborts(self, chain_project):
        manifest = chain_project.manifest()
        path = chain_project.root / "src/B.tsx"
        path.write_text(path.read_text() + "export const changed = true;\n")

        with pytest.raises(IntegrityError) as exc_info:
            await pack("src/A.tsx", manifest, PackOptions(depth=2, hash_lock=True), chain_project.root)
        assert exc_info.value.entry_id == "src/B.tsx"

    @pytest.mark.asyncio
    async def test_fresh_contracts_pass(self, chain_project):
        bundle = await pack(
            "src/A.tsx", chain_project.manifest(), PackOptions(depth=2, hash_lock=True), chain_project.root,
        )
        assert len(bundle.nodes) == 3


class TestCodeInclusion:
    """Assemble-step source payloads."""

    @pytest.mark.asyncio
    async def test_header_only(self, chain_project):
        bundle = await pack(
            "src/C.tsx", chain_project.manifest(), PackOptions(include_code="header"), chain_project.root,
        )
        node = bundle.nodes[0]
        assert node.code is None
        assert node.code_header.startswith("/**")
        assert "@ctxpack" in node.code_header

    @pytest.mark.asyncio
    async def test_full_source(self, chain_project):
        bundle = await pack(
            "src/C.tsx", chain_project.manifest(), PackOptions(include_code="full"), chain_project.root,
        )
        node = bundle.nodes[0]
        assert node.code == (chain_project.root / "src/C.tsx").read_text()
        assert node.code_header is not None

    @pytest.mark.asyncio
    async def test_none(self, chain_project):
        bundle = await pack(
            "src/C.tsx", chain_project.manifest(), PackOptions(include_code="none"), chain_project.root,
        )
        assert bundle.nodes[0].code is None
        assert bundle.nodes[0].code_header is None
        assert "codeHeader" not in bundle.to_dict()["graph"]["nodes"][0]


class TestInternalHelperFilter:
    """Filter-step removal of same-file helpers."""

    @pytest.mark.asyncio
    async def test_helper_not_reported(self, project):
        project.add("src/Card.tsx", components=["CardRow", "Button"], functions=["CardRow"])
        project.add("src/Button.tsx")
        bundle = await pack("src/Card.tsx", project.manifest(), PackOptions(), project.root)

        assert bundle.node_ids == ["src/Button.tsx", "src/Card.tsx"]
        assert bundle.missing == ()


class TestPackOptions:
    """Validation of PackOptions."""

    def test_negative_depth(self):
        with pytest.raises(ValueError):
            PackOptions(depth=-1)

    def test_zero_max_nodes(self):
        with pytest.raises(ValueError):
            PackOptions(max_nodes=0)

    def test_bad_include_code(self):
        with pytest.raises(ValueError):
            PackOptions(include_code="everything")


class TestPackAll:
    """Tests for pack_all() and PackOrchestrator."""

    @pytest.mark.asyncio
    async def test_partial_failure(self, chain_project):
        chain_project.add("src/Orphan.tsx", components=["Lonely"])
        chain_project.add("src/Lonely.tsx")
        manifest = chain_project.manifest()
        chain_project.drop_sidecar("src/Lonely.tsx")

        result = await pack_all(manifest, PackOptions(depth=2, strict=True), chain_project.root)

        assert [b.entry_id for b in result.bundles] == ["src/A.tsx"]
        assert list(result.failures) == ["src/Orphan.tsx"]
        assert isinstance(result.failures["src/Orphan.tsx"], IntegrityError)
        assert not result.ok

    @pytest.mark.asyncio
    async def test_orchestrator_third_party(self, chain_project):
        orchestrator = PackOrchestrator(chain_project.root)
        result = await orchestrator.pack_all(chain_project.manifest(), PackOptions(depth=2))

        assert result.ok
        third_party = result.third_party()
        assert [d.package_name for d in third_party] == ["left-pad"]
        assert third_party[0].version == "^1.3.0"

"""
Unit Tests for the Safe-Delete Resolver

Tests content-based partitioning, fail-closed behaviour and handling of
unreadable source files.

Author: media-ledger Project
License: MIT
"""

import pytest

from media_ledger.errors import FileUnreadableError, PreconditionMissingError
from media_ledger.provenance.digest_store import ContentDigestStore
from media_ledger.provenance.ledger import LedgerEntry, LedgerSnapshot, ProvenanceLedger
from media_ledger.provenance.resolver import SafeDeleteResolver, ensure_outside_archive, partition
from media_ledger.provenance.scanner import PopulationScanner, SourceInventoryEntry
from media_ledger.utils.file_ops import calculate_file_hash


@pytest.fixture
def archive(tmp_path):
    """Archive holding two renamed pictures."""
    root = tmp_path / "archive" / "2024"
    root.mkdir(parents=True)
    (root / "Ferie_001.jpg").write_bytes(b"beach")
    (root / "Ferie_002.jpg").write_bytes(b"mountain")
    return tmp_path / "archive"


@pytest.fixture
def snapshot(archive, tmp_path):
    """Ledger snapshot freshly rebuilt from the archive."""
    store = ContentDigestStore(str(tmp_path / "state" / "archive.txt"))
    ledger = ProvenanceLedger(str(tmp_path / "state" / "ledger.csv"), PopulationScanner(store))
    return ledger.rebuild(str(archive))


def fresh_scanner(root):
    return PopulationScanner(ContentDigestStore())


class TestPartition:
    """Test suite for the partition function."""

    def test_membership_only(self):
        """Test digests alone decide the side."""
        inventory = [
            SourceInventoryEntry(path="/s/a.jpg", digest="aa"),
            SourceInventoryEntry(path="/s/b.jpg", digest="bb"),
            SourceInventoryEntry(path="/s/dup.jpg", digest="aa"),
        ]

        resolution = partition(inventory, frozenset({"aa"}), "/s")

        assert resolution.to_delete == {"/s/a.jpg", "/s/dup.jpg"}
        assert resolution.to_keep == {"/s/b.jpg"}
        assert resolution.total == 3
        assert resolution.sorted_deletions() == ["/s/a.jpg", "/s/dup.jpg"]

    def test_empty_inventory(self):
        """Test an empty source yields empty sets."""
        resolution = partition([], frozenset({"aa"}))

        assert resolution.to_delete == set()
        assert resolution.to_keep == set()


class TestResolve:
    """Test suite for SafeDeleteResolver.resolve."""

    def test_renamed_archive_copy_is_deletable(self, snapshot, tmp_path):
        """Test a source file whose content was archived under another name."""
        source = tmp_path / "source"
        source.mkdir()
        (source / "IMG_4001.jpg").write_bytes(b"beach")
        (source / "IMG_4002.jpg").write_bytes(b"not archived yet")

        resolution = SafeDeleteResolver(snapshot, fresh_scanner).resolve(str(source))

        assert resolution.to_delete == {str(source / "IMG_4001.jpg")}
        assert resolution.to_keep == {str(source / "IMG_4002.jpg")}

    def test_same_name_different_content_kept(self, snapshot, tmp_path):
        """Test a matching filename never authorizes deletion."""
        source = tmp_path / "source"
        source.mkdir()
        (source / "Ferie_001.jpg").write_bytes(b"edited beach")

        resolution = SafeDeleteResolver(snapshot, fresh_scanner).resolve(str(source))

        assert resolution.to_delete == set()
        assert resolution.to_keep == {str(source / "Ferie_001.jpg")}

    def test_removed_from_archive_not_deletable(self, archive, tmp_path):
        """Test content removed from the archive is no longer deletable."""
        source = tmp_path / "source"
        source.mkdir()
        (source / "IMG_1.jpg").write_bytes(b"mountain")
        store = ContentDigestStore(str(tmp_path / "state" / "archive.txt"))
        ledger = ProvenanceLedger(str(tmp_path / "state" / "ledger.csv"), PopulationScanner(store))
        ledger.rebuild(str(archive))

        (archive / "2024" / "Ferie_002.jpg").unlink()
        snapshot = ledger.rebuild(str(archive))
        resolution = SafeDeleteResolver(snapshot, fresh_scanner).resolve(str(source))

        assert resolution.to_delete == set()
        assert resolution.to_keep == {str(source / "IMG_1.jpg")}

    def test_missing_snapshot_fails_closed(self, tmp_path):
        """Test no ledger means no deletion set."""
        with pytest.raises(PreconditionMissingError):
            SafeDeleteResolver(None, fresh_scanner).resolve(str(tmp_path))

    def test_empty_snapshot_fails_closed(self, tmp_path):
        """Test an empty ledger means no deletion set."""
        with pytest.raises(PreconditionMissingError):
            SafeDeleteResolver(LedgerSnapshot([]), fresh_scanner).resolve(str(tmp_path))

    def test_empty_source(self, snapshot, tmp_path):
        """Test an empty source folder resolves to nothing."""
        source = tmp_path / "empty"
        source.mkdir()

        resolution = SafeDeleteResolver(snapshot, fresh_scanner).resolve(str(source))

        assert resolution.total == 0
        assert resolution.failures == []

    def test_unreadable_file_only_in_failures(self, snapshot, tmp_path, monkeypatch):
        """Test a file that cannot be hashed is neither deleted nor kept."""
        source = tmp_path / "source"
        source.mkdir()
        bad = source / "locked.jpg"
        bad.write_bytes(b"beach")
        store = ContentDigestStore()

        def refuse(path):
            raise FileUnreadableError(path, "Permission denied")

        monkeypatch.setattr(store, "compute_digest", refuse)
        resolution = SafeDeleteResolver(snapshot, lambda root: PopulationScanner(store)).resolve(str(source))

        assert str(bad) not in resolution.to_delete
        assert str(bad) not in resolution.to_keep
        assert resolution.failures == [(str(bad), "Permission denied")]

    def test_missing_source_root(self, snapshot, tmp_path):
        """Test an absent source root propagates FileUnreadableError."""
        with pytest.raises(FileUnreadableError):
            SafeDeleteResolver(snapshot, fresh_scanner).resolve(str(tmp_path / "nope"))

    def test_hand_built_snapshot(self, tmp_path):
        """Test resolution against a snapshot loaded from any source."""
        source = tmp_path / "source"
        source.mkdir()
        photo = source / "a.jpg"
        photo.write_bytes(b"abc")
        snapshot = LedgerSnapshot([LedgerEntry(digest=calculate_file_hash(str(photo)), path="/lr/x.jpg")])

        resolution = SafeDeleteResolver(snapshot, fresh_scanner).resolve(str(source))

        assert resolution.to_delete == {str(photo)}

    def test_ledger_listed_file_never_deleted(self, tmp_path):
        """Test a file recorded in the ledger is kept even though its digest matches."""
        source = tmp_path / "source"
        source.mkdir()
        photo = source / "a.jpg"
        photo.write_bytes(b"abc")
        snapshot = LedgerSnapshot([LedgerEntry(digest=calculate_file_hash(str(photo)), path=str(photo))])

        resolution = SafeDeleteResolver(snapshot, fresh_scanner).resolve(str(source))

        assert resolution.to_delete == set()
        assert resolution.to_keep == {str(photo)}

    def test_identities_of_candidates(self, snapshot, tmp_path):
        """Test each deletion candidate carries the identity it was hashed with."""
        source = tmp_path / "source"
        source.mkdir()
        (source / "IMG_1.jpg").write_bytes(b"beach")
        (source / "IMG_2.jpg").write_bytes(b"kept")

        resolution = SafeDeleteResolver(snapshot, fresh_scanner).resolve(str(source))

        assert set(resolution.identities) == {str(source / "IMG_1.jpg")}
        assert resolution.identities[str(source / "IMG_1.jpg")].size == 5

    @pytest.mark.parametrize("relative", [".", "2024", ".."])
    def test_source_overlapping_archive_refused(self, snapshot, archive, relative):
        """Test the archive itself, a folder inside it or its parent is refused."""
        resolver = SafeDeleteResolver(snapshot, fresh_scanner, archive_root=str(archive))

        with pytest.raises(PreconditionMissingError, match="overlaps the archive"):
            resolver.resolve(str(archive / relative))

        assert (archive / "2024" / "Ferie_001.jpg").exists()


class TestEnsureOutsideArchive:
    """Test suite for ensure_outside_archive."""

    def test_sibling_folder_allowed(self, tmp_path):
        """Test folders next to the archive pass."""
        ensure_outside_archive(str(tmp_path / "source"), str(tmp_path / "archive"))

    def test_name_prefix_is_not_overlap(self, tmp_path):
        """Test a shared name prefix does not count as nesting."""
        ensure_outside_archive(str(tmp_path / "archive-old"), str(tmp_path / "archive"))

    def test_trailing_slash_equal(self, tmp_path):
        """Test the archive spelled with a trailing slash is still the archive."""
        with pytest.raises(PreconditionMissingError):
            ensure_outside_archive(str(tmp_path / "archive") + "/", str(tmp_path / "archive"))

    def test_symlink_into_archive(self, tmp_path):
        """Test a symlink pointing into the archive is resolved."""
        archive = tmp_path / "archive"
        (archive / "2024").mkdir(parents=True)
        link = tmp_path / "link"
        link.symlink_to(archive / "2024")

        with pytest.raises(PreconditionMissingError):
            ensure_outside_archive(str(link), str(archive))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

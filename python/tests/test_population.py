"""Tests for PopulationGuard, fingerprint records and file locks."""

import shutil
import threading

import pytest

from depmanager.exceptions import FetchError, FetchFailed
from depmanager.population import FileLock, FingerprintRecord, PopulationGuard, safe_name

from conftest import FakeFetcher, repo_url


@pytest.fixture
def base_dir(tmp_path):
    return tmp_path / "deps"


def make_guard(fetcher, base_dir, force_update=False):
    return PopulationGuard(fetcher, base_dir, force_update=force_update)


class TestFingerprint:
    """Tests for fingerprint derivation."""

    def test_stable(self):
        first = PopulationGuard.fingerprint("B", repo_url("B"), "v1")
        assert first == PopulationGuard.fingerprint("B", repo_url("B"), "v1")
        assert len(first) == 40

    def test_depends_on_every_field(self):
        base = PopulationGuard.fingerprint("B", repo_url("B"), "v1")
        assert base != PopulationGuard.fingerprint("B", repo_url("B"), "v2")
        assert base != PopulationGuard.fingerprint("B", repo_url("C"), "v1")
        assert base != PopulationGuard.fingerprint("C", repo_url("B"), "v1")

    def test_safe_name_keeps_plain_names(self):
        assert safe_name("lib-1.2_x") == "lib-1.2_x"

    def test_safe_name_rewritten_names_do_not_collide(self):
        rewritten = safe_name("org/lib")
        assert rewritten.startswith("org_lib-")
        assert "/" not in rewritten
        assert rewritten != safe_name("org_lib")
        assert rewritten != safe_name("org lib")
        assert safe_name("..") not in ("..", ".")


class TestFingerprintRecord:
    """Tests for the persisted name=hash file."""

    def test_missing_file_is_empty(self, tmp_path):
        assert FingerprintRecord(tmp_path / "fingerprints.txt").load() == {}

    def test_update_writes_sorted_entries(self, tmp_path):
        record = FingerprintRecord(tmp_path / "stamps" / "fingerprints.txt")
        record.update("zlib", "aaa")
        record.update("boost", "bbb")
        record.update("zlib", "ccc")

        assert record.path.read_text() == "boost=bbb\nzlib=ccc\n"
        assert record.get("zlib") == "ccc"
        # No temp files left behind by the atomic rename
        assert sorted(p.name for p in record.path.parent.iterdir() if p.name.endswith(".tmp")) == []

    def test_load_skips_comments_and_malformed_lines(self, tmp_path):
        path = tmp_path / "fingerprints.txt"
        path.write_text("# header\n\nA=123\nbroken line\n B = 456 \nlib=x=789\n")
        assert FingerprintRecord(path).load() == {"A": "123", "B": "456", "lib=x": "789"}


class TestFileLock:
    """Tests for the cross-process lock."""

    def test_lock_excludes_other_holders(self, tmp_path):
        lock_path = tmp_path / "B.lock"
        acquired = threading.Event()
        order = []

        def contender():
            with FileLock(lock_path):
                order.append("contender")
            acquired.set()

        with FileLock(lock_path):
            thread = threading.Thread(target=contender)
            thread.start()
            assert not acquired.wait(0.2)
            order.append("holder")

        thread.join(5)
        assert order == ["holder", "contender"]
        assert lock_path.exists()


class TestPopulationGuard:
    """Tests for at-most-once population."""

    def test_first_populate_fetches_and_records(self, base_dir):
        fetcher = FakeFetcher()
        guard = make_guard(fetcher, base_dir)

        result = guard.populate("B", repo_url("B"), "v1")

        assert result.fetched
        assert result.source_dir == base_dir / "B"
        assert (base_dir / "B" / "depmanager.json").exists()
        assert fetcher.calls == [(repo_url("B"), "v1")]
        assert guard.record.get("B") == result.fingerprint
        assert guard.fetch_count == 1

    def test_repeat_in_same_run_does_not_fetch(self, base_dir):
        fetcher = FakeFetcher()
        guard = make_guard(fetcher, base_dir, force_update=True)
        guard.populate("B", repo_url("B"), "v1")
        again = guard.populate("B", repo_url("B"), "v1")

        assert not again.fetched
        assert len(fetcher.calls) == 1
        assert guard.is_populated(again.fingerprint)

    def test_next_run_reuses_intact_checkout(self, base_dir):
        make_guard(FakeFetcher(), base_dir).populate("B", repo_url("B"), "v1")

        fetcher = FakeFetcher()
        guard = make_guard(fetcher, base_dir)
        result = guard.populate("B", repo_url("B"), "v1")

        assert not result.fetched
        assert fetcher.calls == []
        assert guard.fetch_count == 0

    def test_next_run_refetches_missing_checkout(self, base_dir):
        make_guard(FakeFetcher(), base_dir).populate("B", repo_url("B"), "v1")
        shutil.rmtree(base_dir / "B")

        fetcher = FakeFetcher()
        assert make_guard(fetcher, base_dir).populate("B", repo_url("B"), "v1").fetched
        assert len(fetcher.calls) == 1

    def test_changed_reference_refetches(self, base_dir):
        make_guard(FakeFetcher(), base_dir).populate("B", repo_url("B"), "v1")

        fetcher = FakeFetcher()
        guard = make_guard(fetcher, base_dir)
        result = guard.populate("B", repo_url("B"), "v2")

        assert result.fetched
        assert guard.record.get("B") == PopulationGuard.fingerprint("B", repo_url("B"), "v2")

    def test_force_update_ignores_record(self, base_dir):
        make_guard(FakeFetcher(), base_dir).populate("B", repo_url("B"), "v1")

        fetcher = FakeFetcher()
        result = make_guard(fetcher, base_dir, force_update=True).populate("B", repo_url("B"), "v1")

        assert result.fetched
        assert len(fetcher.calls) == 1

    def test_name_with_equals_sign_is_reused_next_run(self, base_dir):
        make_guard(FakeFetcher(), base_dir).populate("lib=x", repo_url("lib"), "v1")

        fetcher = FakeFetcher()
        result = make_guard(fetcher, base_dir).populate("lib=x", repo_url("lib"), "v1")

        assert not result.fetched
        assert fetcher.calls == []

    def test_sanitized_names_get_separate_checkouts(self, base_dir):
        guard = make_guard(FakeFetcher(), base_dir)
        slash = guard.populate("org/lib", repo_url("org-lib"), "v1")
        underscore = guard.populate("org_lib", repo_url("org_lib"), "v1")

        assert slash.source_dir != underscore.source_dir
        assert slash.fetched and underscore.fetched
        assert make_guard(FakeFetcher(), base_dir).populate("org/lib", repo_url("org-lib"), "v1").fetched is False

    def test_fetch_failure_is_wrapped_and_not_retried(self, base_dir):
        fetcher = FakeFetcher(failing={repo_url("B")})
        guard = make_guard(fetcher, base_dir)

        with pytest.raises(FetchFailed) as excinfo:
            guard.populate("B", repo_url("B"), "v1")

        assert excinfo.value.name == "B"
        assert excinfo.value.reference == "v1"
        assert isinstance(excinfo.value.error, FetchError)
        assert len(fetcher.calls) == 1
        assert guard.record.get("B") is None

    def test_concurrent_callers_wait_for_single_fetch(self, base_dir):
        started = threading.Event()
        release = threading.Event()

        class SlowFetcher(FakeFetcher):
            def fetch_source(self, repository, reference, destination, patch_command=None):
                started.set()
                release.wait(5)
                return super().fetch_source(repository, reference, destination, patch_command)

        fetcher = SlowFetcher()
        guard = make_guard(fetcher, base_dir)
        results = []

        def worker():
            results.append(guard.populate("B", repo_url("B"), "v1"))

        first = threading.Thread(target=worker)
        first.start()
        assert started.wait(5)
        second = threading.Thread(target=worker)
        second.start()
        release.set()
        first.join(5)
        second.join(5)

        assert len(fetcher.calls) == 1
        assert sorted(r.fetched for r in results) == [False, True]
        assert results[0].source_dir == results[1].source_dir

"""
Tests for the cache-first DependencyInstaller and package manager detection.
"""

import pytest

from bootcore.errors import PackageInstallError, PackageManagerUnavailableError, VerificationError
from bootcore.install import (
    DependencyInstaller,
    PackageCache,
    PackageManager,
    PackageRequest,
    RetryPolicy,
    detect_package_manager,
)


def req(token, dev=False):
    return PackageRequest.parse(token, dev_only=dev)


class TestPackageManager:
    """Tests for detection and argv construction."""

    def test_prefers_pnpm(self):
        manager = detect_package_manager(which=lambda name: f"/usr/bin/{name}")
        assert manager.name == "pnpm"

    def test_falls_back_to_npm(self):
        manager = detect_package_manager(which=lambda name: "/usr/bin/npm" if name == "npm" else None)
        assert manager == PackageManager(name="npm", executable="/usr/bin/npm")

    def test_none_available(self):
        with pytest.raises(PackageManagerUnavailableError) as exc_info:
            detect_package_manager(which=lambda name: None)
        assert "pnpm" in str(exc_info.value)

    def test_pnpm_commands(self):
        pnpm = PackageManager("pnpm", "pnpm")
        assert pnpm.add_command(["zod", "next@15"]) == ["pnpm", "add", "--save-prod", "zod", "next@15"]
        assert pnpm.add_command(["vitest"], dev=True) == ["pnpm", "add", "-D", "vitest"]

    def test_npm_commands(self):
        npm = PackageManager("npm", "npm")
        assert npm.add_command(["vitest"], dev=True) == ["npm", "install", "--save-dev", "vitest"]

    def test_yarn_has_no_save_flag(self):
        assert PackageManager("yarn", "yarn").add_command(["zod"]) == ["yarn", "add", "zod"]


class TestRetryPolicy:
    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0)


class TestInstall:
    """Tests for a single install() pass."""

    def test_cached_package_needs_no_network(self, installer, make_artifact, fake_runner):
        """zod in cache: installed from the artifact, zero remote calls, verified."""
        artifact = make_artifact("zod", "3.23.8")

        report = installer.install([req("zod")])

        assert fake_runner.remote_calls == []
        assert fake_runner.cache_calls == [["pnpm", "add", "--save-prod", str(artifact)]]
        assert report.cached == ["zod"]
        assert installer.verify("zod") is True

    def test_remote_packages_are_batched(self, installer, fake_runner):
        report = installer.install([req("drizzle-orm"), req("postgres@^3"), req("drizzle-kit", dev=True)])

        assert fake_runner.calls == [
            ["pnpm", "add", "--save-prod", "drizzle-orm", "postgres@^3"],
            ["pnpm", "add", "-D", "drizzle-kit"],
        ]
        assert report.remote == ["drizzle-orm", "postgres", "drizzle-kit"]
        assert report.verified == ["drizzle-orm", "postgres", "drizzle-kit"]

    def test_cache_before_network(self, installer, make_artifact, fake_runner):
        make_artifact("zod", "3.23.8")

        report = installer.install([req("next"), req("zod")])

        assert len(fake_runner.calls) == 2
        assert fake_runner.calls[0][-1].endswith("zod-3.23.8.tgz")
        assert fake_runner.calls[1][-1] == "next"
        assert report.cached == ["zod"]
        assert report.remote == ["next"]

    def test_dev_flag_applies_to_cached_artifacts(self, installer, make_artifact, fake_runner):
        make_artifact("vitest", "2.1.0")

        installer.install([req("vitest", dev=True)])

        assert fake_runner.calls[0][:3] == ["pnpm", "add", "-D"]

    def test_duplicate_requests_install_once(self, installer, fake_runner):
        installer.install([req("zod"), req("zod")])

        assert fake_runner.calls == [["pnpm", "add", "--save-prod", "zod"]]

    def test_partial_cache_failure_is_isolated(self, installer, make_artifact, fake_runner):
        """A failing artifact does not stop the others; all failures are reported together."""
        make_artifact("zod", "3.23.8")
        make_artifact("next", "15.0.3")
        fake_runner.failing.add("next")

        with pytest.raises(PackageInstallError) as exc_info:
            installer.install([req("next"), req("zod"), req("postgres")])

        assert exc_info.value.failed == ["next"]
        assert installer.verify("zod") is True
        assert installer.verify("postgres") is True
        assert len(fake_runner.calls) == 3

    def test_failed_remote_batch_names_every_package(self, installer, fake_runner):
        fake_runner.failing.add("postgres")

        with pytest.raises(PackageInstallError) as exc_info:
            installer.install([req("drizzle-orm"), req("postgres")])

        assert exc_info.value.failed == ["drizzle-orm", "postgres"]
        assert not isinstance(exc_info.value, VerificationError)

    def test_missing_after_install_is_verification_error(self, installer, fake_runner):
        fake_runner.phantom.add("zod")

        with pytest.raises(VerificationError) as exc_info:
            installer.install([req("zod")])

        assert exc_info.value.failed == ["zod"]
        assert isinstance(exc_info.value, PackageInstallError)

    def test_empty_request_does_nothing(self, target_dir, cache_dir, fake_runner):
        installer = DependencyInstaller(target_dir, PackageCache(cache_dir), candidates=("nonexistent",), runner=fake_runner)

        report = installer.install([])

        assert report.ok
        assert fake_runner.calls == []

    def test_preflight_does_not_install(self, installer, make_artifact, fake_runner):
        make_artifact("zod", "3.23.8")

        report = installer.preflight([req("zod"), req("next"), req("zod")])

        assert [r.name for r, _ in report.cached] == ["zod"]
        assert [r.name for r in report.network] == ["next"]
        assert fake_runner.calls == []


class TestInstallWithRetry:
    """Tests for the fixed-delay retry wrapper."""

    def test_transient_failure_recovers(self, installer, fake_runner, sleeper):
        fake_runner.flaky["drizzle-orm"] = 1

        report = installer.install_with_retry([req("drizzle-orm")])

        assert report.attempts == 2
        assert sleeper.calls == [2.0, 1.0]  # retry delay, then settle pause
        assert installer.verify("drizzle-orm") is True

    def test_success_first_time_only_settles(self, installer, sleeper):
        report = installer.install_with_retry([req("zod")])

        assert report.attempts == 1
        assert sleeper.calls == [1.0]

    def test_exhausted_attempts_raise_last_error(self, installer, fake_runner, sleeper):
        fake_runner.failing.add("left-pad")

        with pytest.raises(PackageInstallError) as exc_info:
            installer.install_with_retry([req("left-pad")])

        assert exc_info.value.failed == ["left-pad"]
        assert len(fake_runner.calls) == 3
        assert sleeper.calls == [2.0, 2.0]

    def test_policy_override(self, installer, fake_runner, sleeper):
        fake_runner.failing.add("left-pad")

        with pytest.raises(PackageInstallError):
            installer.install_with_retry([req("left-pad")], policy=RetryPolicy(attempts=1, delay_s=5, settle_s=0))

        assert len(fake_runner.calls) == 1
        assert sleeper.calls == []

    def test_missing_package_manager_is_not_retried(self, target_dir, cache_dir, fake_runner, sleeper):
        installer = DependencyInstaller(
            target_dir,
            PackageCache(cache_dir),
            candidates=("nonexistent",),
            runner=fake_runner,
            sleep=sleeper,
        )

        with pytest.raises(PackageManagerUnavailableError):
            installer.install_with_retry([req("zod")])

        assert sleeper.calls == []
        assert fake_runner.calls == []

    def test_empty_request(self, installer, fake_runner, sleeper):
        report = installer.install_with_retry([])

        assert report.attempts == 0
        assert fake_runner.calls == []
        assert sleeper.calls == []

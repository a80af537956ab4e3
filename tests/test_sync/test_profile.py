"""Tests for first_opened_at profile sync."""

P = "user-1"


class TestProfileSync:
    def test_pushes_local_value_when_remote_missing(self, orchestrator, backend,
                                                    repo, clock, signed_in):
        first_opened = clock()
        repo.ensure_user_profile(first_opened)
        clock.advance(10_000)

        result = orchestrator.profile_sync.run(P)

        assert result.pushed == 1
        assert backend.get_profile(P)["firstOpenedAt"] == first_opened
        assert repo.get_user_profile().synced_principal == P

    def test_remote_value_is_never_replaced(self, orchestrator, backend, repo,
                                            clock, signed_in):
        backend.set_first_opened_at_if_missing(P, 42)
        repo.ensure_user_profile(clock())

        result = orchestrator.profile_sync.run(P)

        assert result.pushed == 0
        assert backend.get_profile(P)["firstOpenedAt"] == 42

    def test_second_run_makes_no_calls(self, orchestrator, backend, signed_in):
        orchestrator.profile_sync.run(P)
        before = backend.total_calls
        orchestrator.profile_sync.run(P)
        assert backend.total_calls == before

    def test_pending_until_synced_for_principal(self, orchestrator, provider,
                                                signed_in):
        profile_sync = orchestrator.profile_sync
        assert profile_sync.has_local_changes(P)
        profile_sync.run(P)
        assert not profile_sync.has_local_changes(P)

        provider.sign_in("user-2", "tok-2")
        assert profile_sync.has_local_changes("user-2")

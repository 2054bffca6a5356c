"""
Tests for the role sync worker.
"""

from unittest.mock import patch

import pytest

from whitelist_engine.config.settings import Settings
from whitelist_engine.models.grant import Grant
from whitelist_engine.workers import role_sync_job
from whitelist_engine.workers.role_sync_job import WORKER_ACTOR, run_cycle

USER = "200000000000000001"
STEAM = "76561198000000001"
ROLE = "1002"


class TestRunCycle:

    @pytest.mark.asyncio
    async def test_cycle_syncs_members(self, db_session, gateway, cache, make_role_config, make_link):
        make_role_config(ROLE, "SquadAdmin", "reserve", position=200)
        make_link(USER, STEAM, score=1.0)
        gateway.add(USER, [ROLE])
        gateway.add("bot-1", [ROLE], is_bot=True)

        stats = await run_cycle(gateway, cache=cache, settings=Settings(), db=db_session)

        assert stats.failed is False
        assert stats.checked == 1
        assert stats.updated == 1
        assert stats.skipped_bots == 1
        grant = db_session.query(Grant).one()
        assert grant.granted_by == WORKER_ACTOR

    @pytest.mark.asyncio
    async def test_gateway_failure_marks_cycle_failed(self, db_session, gateway):
        gateway.fail_members = True

        stats = await run_cycle(gateway, settings=Settings(), db=db_session)

        assert stats.failed is True
        assert stats.errors == 1
        assert stats.to_dict()["failed"] is True

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_cycle_failed(self, db_session, gateway):
        with patch.object(role_sync_job.RoleSyncEngine, "sync_all", side_effect=RuntimeError("boom")):
            stats = await run_cycle(gateway, settings=Settings(), db=db_session)

        assert stats.failed is True


class TestMain:

    def test_exits_without_discord_config(self):
        with patch.object(role_sync_job, "get_settings", return_value=Settings()), \
                patch.object(role_sync_job.signal, "signal") as register:
            with pytest.raises(SystemExit) as exc_info:
                role_sync_job.main()

        assert exc_info.value.code == 1
        assert register.call_count == 2

    def test_signal_sets_shutdown(self, monkeypatch):
        monkeypatch.setattr(role_sync_job, "_shutdown", False)
        role_sync_job._handle_signal(15, None)
        assert role_sync_job._shutdown is True

"""Tests for relay.ops.database."""

from relay.ops.database import check_health, get_table_counts, initialize_database


class TestDatabaseOps:
    def test_initialize(self, ctx):
        data = initialize_database(ctx).data
        assert "workflow_runs" in data["tables"]
        assert data["dry_run"] is False

    def test_initialize_dry_run(self, ctx):
        ctx.dry_run = True
        assert initialize_database(ctx).data["dry_run"] is True

    def test_counts(self, ctx, make_run):
        make_run()
        assert get_table_counts(ctx).data["workflow_runs"] == 1

    def test_health(self, ctx):
        data = check_health(ctx).data
        assert data["status"] == "ok"
        assert data["checks"] == {"database": "ok", "engine": "ok", "content_store": "configured"}

    def test_health_engine_unreachable(self, ctx, engine, monkeypatch):
        monkeypatch.setattr(engine, "health", lambda: False)
        assert check_health(ctx).data["status"] == "degraded"

    def test_health_without_engine(self, ctx, runtime):
        runtime.engine = None
        assert check_health(ctx).data["checks"]["engine"] == "not_configured"

"""
Tests for workflow definitions: manual registration, enable/disable and
reconciliation against engine deployments.
"""

from __future__ import annotations

import pytest

from relay.core.errors import ConflictError, NotFoundError, ValidationError
from relay.execution.definitions import (
    get_definition,
    list_definitions,
    register_definition,
    set_enabled,
    sync_definitions,
)
from relay.execution.engine import Deployment
from relay.execution.models import DefinitionSource, DefinitionSyncStatus, WorkflowType


def _deployment(key: str, *, dep_id: str | None = None, wtype: str | None = None, version: str = "1") -> Deployment:
    tags = [f"relay:key={key}"]
    if wtype:
        tags.append(f"relay:type={wtype}")
    return Deployment(id=dep_id or f"dep-{key}", name=f"{key}/prod", version=version, tags=tuple(tags))


class TestRegister:
    def test_register_manual(self, conn):
        definition = register_definition(
            conn, {"workflow_key": "summarize", "deployment_name": "summarize/default"}
        )
        assert definition.source is DefinitionSource.MANUAL
        assert definition.sync_status is DefinitionSyncStatus.ACTIVE
        assert definition.workflow_type is WorkflowType.NODE
        assert definition.enabled is True
        assert definition.name == "summarize"

    def test_register_updates_existing(self, conn):
        register_definition(conn, {"workflow_key": "summarize", "deployment_name": "a"})
        updated = register_definition(conn, {"workflow_key": "summarize", "deployment_name": "b"})
        assert updated.deployment_name == "b"
        assert len(list_definitions(conn)) == 1

    @pytest.mark.parametrize(
        "data",
        [
            {"deployment_name": "x"},
            {"workflow_key": "  ", "deployment_name": "x"},
            {"workflow_key": "k"},
            {"workflow_key": "k", "deployment_name": "x", "workflow_type": "folder"},
        ],
    )
    def test_invalid(self, conn, data):
        with pytest.raises(ValidationError):
            register_definition(conn, data)

    def test_engine_managed_key_rejected(self, conn, engine):
        engine.deployments = [_deployment("summarize")]
        sync_definitions(conn, engine)
        with pytest.raises(ConflictError):
            register_definition(conn, {"workflow_key": "summarize", "deployment_name": "x"})


class TestEnable:
    def test_toggle(self, conn, register_workflow):
        register_workflow()
        assert set_enabled(conn, "summarize", False).enabled is False
        assert set_enabled(conn, "summarize", True).enabled is True

    def test_unknown(self, conn):
        with pytest.raises(NotFoundError):
            set_enabled(conn, "ghost", True)

    def test_get_unknown(self, conn):
        with pytest.raises(NotFoundError):
            get_definition(conn, "ghost")


class TestSync:
    def test_creates_from_tags(self, conn, engine):
        engine.deployments = [
            _deployment("summarize"),
            _deployment("translate", wtype="document"),
            Deployment(id="dep-untagged", name="untagged/prod"),
        ]
        report = sync_definitions(conn, engine).to_dict()
        assert sorted(report["created"]) == ["summarize", "translate"]
        translate = get_definition(conn, "translate")
        assert translate.workflow_type is WorkflowType.DOCUMENT
        assert translate.source is DefinitionSource.ENGINE
        assert translate.deployment_id == "dep-translate"

    def test_unchanged_then_updated(self, conn, engine):
        engine.deployments = [_deployment("summarize")]
        sync_definitions(conn, engine)
        assert sync_definitions(conn, engine).unchanged == ["summarize"]

        engine.deployments = [_deployment("summarize", version="2")]
        assert sync_definitions(conn, engine).updated == ["summarize"]

    def test_disappeared_deployment_marked_missing(self, conn, engine):
        engine.deployments = [_deployment("summarize")]
        sync_definitions(conn, engine)
        engine.deployments = []
        report = sync_definitions(conn, engine)
        assert report.missing == ["summarize"]
        assert get_definition(conn, "summarize").sync_status is DefinitionSyncStatus.MISSING

    def test_enabled_flag_survives_resync(self, conn, engine):
        engine.deployments = [_deployment("summarize")]
        sync_definitions(conn, engine)
        set_enabled(conn, "summarize", False)
        engine.deployments = [_deployment("summarize", version="2")]
        sync_definitions(conn, engine)
        assert get_definition(conn, "summarize").enabled is False

    def test_manual_key_conflict_reported(self, conn, engine, register_workflow):
        register_workflow("summarize")
        engine.deployments = [_deployment("summarize")]
        report = sync_definitions(conn, engine)
        assert report.errors[0]["workflow_key"] == "summarize"
        assert get_definition(conn, "summarize").source is DefinitionSource.MANUAL

    def test_invalid_type_tag_reported(self, conn, engine):
        engine.deployments = [_deployment("odd", wtype="folder")]
        report = sync_definitions(conn, engine)
        assert report.created == []
        assert "invalid type tag" in report.errors[0]["error"]

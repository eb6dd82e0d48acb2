"""Demo seed data and environment configuration."""

import pytest

from workitems.config import ProductionConfig, config
from workitems.middleware.jwt_auth import DEMO_PRINCIPAL
from workitems.services import lineage_query
from workitems.services.demo_data import DEMO_ITEMS, install_demo_data
from workitems.models import db


def test_install_demo_data_builds_valid_tree():
    created = install_demo_data()
    db.session.commit()

    assert created == len(DEMO_ITEMS)
    rows = lineage_query.list_work_items_with_lineage(DEMO_PRINCIPAL, {"search": "cache invalidation"})
    titles = {row["title"]: row["depth"] for row in rows}
    assert titles == {
        "Load-test cache invalidation": 0,
        "Introduce response caching layer": 1,
        "API Performance Optimization": 2,
        "Mobile App Development Project": 3,
        "Q1 Revenue Growth Initiative": 4,
    }


def test_install_demo_data_is_rerunnable():
    install_demo_data()
    db.session.commit()
    install_demo_data()
    db.session.commit()

    rows = lineage_query.list_work_items_with_lineage(DEMO_PRINCIPAL, {"limit": 200})
    assert len(rows) == len(DEMO_ITEMS)


def test_testing_config_has_no_policy_url():
    cfg = config["testing"]()
    assert cfg.POLICY_SERVICE_URL == ""
    assert cfg.POLICY_FAILURE_MODE == "fallback"
    assert cfg.LINEAGE_DEPTH_CAP == 10


def test_production_config_requires_database_url(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        ProductionConfig()

import pytest

from alarm_evaluator.settings import load_settings

pytestmark = [pytest.mark.unit]

MANAGED_VARS = (
    "TENANT_ID",
    "DATABASE_URL",
    "DB_PASSWORD",
    "DB_HOST",
    "EVAL_BATCH_SIZE",
    "ENTITY_SOURCE",
    "POLL_INTERVAL_SECONDS",
    "REDIS_ADDR",
    "BED_FALL_DWELL_SECONDS",
    "ALARM_DEDUP_MINUTES",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in MANAGED_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TENANT_ID", "tenant-a")
    monkeypatch.setenv("DB_PASSWORD", "secret")


def test_defaults():
    settings = load_settings()
    assert settings.tenant_ids == ["tenant-a"]
    assert settings.poll_interval_seconds == 5
    assert settings.batch_size == 10
    assert settings.dedup_minutes == 10
    assert settings.entity_source == "catalog"
    assert settings.redis_host_port == ("localhost", 6379)
    assert settings.thresholds.bed_fall_dwell_seconds == 60
    assert settings.thresholds.bathroom_standing_seconds == 300


def test_missing_tenant_is_fatal(monkeypatch):
    monkeypatch.delenv("TENANT_ID")
    with pytest.raises(RuntimeError, match="TENANT_ID"):
        load_settings()


def test_blank_tenant_list_is_fatal(monkeypatch):
    monkeypatch.setenv("TENANT_ID", " , ")
    with pytest.raises(RuntimeError, match="TENANT_ID"):
        load_settings()


def test_password_required_without_dsn(monkeypatch):
    monkeypatch.delenv("DB_PASSWORD")
    with pytest.raises(RuntimeError, match="DB_PASSWORD"):
        load_settings()
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/owlrd")
    assert load_settings().database_url == "postgresql://u:p@db/owlrd"


def test_multiple_tenants(monkeypatch):
    monkeypatch.setenv("TENANT_ID", "tenant-a, tenant-b,")
    assert load_settings().tenant_ids == ["tenant-a", "tenant-b"]


@pytest.mark.parametrize(
    "name,value",
    [
        ("EVAL_BATCH_SIZE", "0"),
        ("EVAL_BATCH_SIZE", "ten"),
        ("ENTITY_SOURCE", "magic"),
        ("BED_FALL_DWELL_SECONDS", "-5"),
    ],
)
def test_invalid_values_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(RuntimeError):
        load_settings()


def test_overrides(monkeypatch):
    monkeypatch.setenv("REDIS_ADDR", "cache:6380")
    monkeypatch.setenv("ENTITY_SOURCE", "cache_scan")
    monkeypatch.setenv("ALARM_DEDUP_MINUTES", "3")
    monkeypatch.setenv("BED_FALL_DWELL_SECONDS", "90")
    settings = load_settings()
    assert settings.redis_host_port == ("cache", 6380)
    assert settings.entity_source == "cache_scan"
    assert settings.dedup_minutes == 3
    assert settings.thresholds.bed_fall_dwell_seconds == 90

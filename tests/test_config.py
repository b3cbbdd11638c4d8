import pytest

from paygate.config import ConfigurationError, load_settings

BASE_ENV = {
    "PAYDUNYA_MASTER_KEY": "m",
    "PAYDUNYA_PRIVATE_KEY": "p",
    "PAYDUNYA_TOKEN": "t",
}


def test_missing_keys_are_all_reported():
    with pytest.raises(ConfigurationError) as exc:
        load_settings({"PAYDUNYA_MASTER_KEY": "m"})
    assert "PAYDUNYA_PRIVATE_KEY" in str(exc.value)
    assert "PAYDUNYA_TOKEN" in str(exc.value)


def test_defaults():
    settings = load_settings(BASE_ENV)
    assert settings.api_base.endswith("/sandbox-api/v1")
    assert settings.merchant_name == "AT-TAQWA"
    assert settings.resources_for("DONATION_QUETE_1") == ("BOOK_PART_2", "BOOK_PART_3")


def test_plan_resources_override():
    env = dict(BASE_ENV, PLAN_RESOURCES='{"BOOK_PART_2": ["BOOK_PART_2"]}', DEFAULT_RESOURCES="")
    settings = load_settings(env)
    assert settings.resources_for("BOOK_PART_2") == ("BOOK_PART_2",)
    assert settings.resources_for("OTHER") == ("BOOK_PART_2", "BOOK_PART_3")


def test_default_resources_can_be_replaced():
    settings = load_settings(dict(BASE_ENV, DEFAULT_RESOURCES="A, B"))
    assert settings.resources_for("ANY") == ("A", "B")


@pytest.mark.parametrize("env", [
    dict(BASE_ENV, PLAN_RESOURCES="not json"),
    dict(BASE_ENV, PLAN_RESOURCES="[1]"),
    dict(BASE_ENV, PLAN_RESOURCES='{"GOLD": "BOOK_PART_2"}'),
    dict(BASE_ENV, PLAN_RESOURCES='{"GOLD": null}'),
    dict(BASE_ENV, PLAN_RESOURCES='{"GOLD": 7}'),
    dict(BASE_ENV, PLAN_RESOURCES='{"GOLD": ["BOOK_PART_2", ""]}'),
    dict(BASE_ENV, PLAN_RESOURCES='{"GOLD": [2]}'),
    dict(BASE_ENV, PAYDUNYA_TIMEOUT="soon"),
])
def test_unreadable_values(env):
    with pytest.raises(ConfigurationError):
        load_settings(env)


def test_plan_may_grant_nothing():
    settings = load_settings(dict(BASE_ENV, PLAN_RESOURCES='{"DONATION_QUETE_1": []}'))
    assert settings.resources_for("DONATION_QUETE_1") == ()

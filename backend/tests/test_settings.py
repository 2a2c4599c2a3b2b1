import pytest
from pydantic import ValidationError

from marketplace.settings import Settings


def _prod(**overrides) -> dict:
    values = {
        "app_env": "prod",
        "auth_secret_key": "a" * 32,
        "metrics_token": "t" * 32,
        "testing": False,
    }
    values.update(overrides)
    return values


def test_prod_settings_accept_strong_configuration():
    configured = Settings(**_prod(cors_origins="https://app.example.com", strict_cors=True))
    assert configured.cors_origins == ["https://app.example.com"]


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"auth_secret_key": "dev-auth-secret"}, "AUTH_SECRET_KEY"),
        ({"metrics_token": None}, "METRICS_TOKEN"),
        ({"testing": True}, "testing"),
        ({"strict_cors": True}, "CORS_ORIGINS"),
        ({"strict_cors": True, "cors_origins": "*"}, "wildcard"),
    ],
)
def test_prod_settings_reject_unsafe_configuration(overrides, message):
    with pytest.raises(ValidationError) as excinfo:
        Settings(**_prod(**overrides))
    assert message in str(excinfo.value)


def test_cors_origins_parse_json_and_csv():
    assert Settings(cors_origins='["https://a.example", "https://b.example"]').cors_origins == [
        "https://a.example",
        "https://b.example",
    ]
    assert Settings(cors_origins="https://a.example, ,https://b.example").cors_origins == [
        "https://a.example",
        "https://b.example",
    ]
    assert Settings().cors_origins == []


def test_response_window_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(order_response_window_seconds=0)

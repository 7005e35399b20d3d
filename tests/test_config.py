from __future__ import annotations

from pathlib import Path
import textwrap

import pytest
from pydantic import ValidationError

from story_engine.config.loader import load_config
from story_engine.config.schema import AppConfigRoot, ChatEndpointConfig, LLMConfig, SamplingConfig, resolve_paths


def test_resolve_paths_makes_absolute(tmp_path: Path) -> None:
    config = AppConfigRoot()
    config.app.data_dir = Path("data")
    config.app.output_dir = Path("output")
    config.storage.sqlite_path = Path("data/story.db")
    config.history.path = Path("data/history.json")

    resolved = resolve_paths(config, tmp_path)

    assert resolved.app.data_dir == (tmp_path / "data").resolve()
    assert resolved.app.output_dir == (tmp_path / "output").resolve()
    assert resolved.storage.sqlite_path == (tmp_path / "data/story.db").resolve()
    assert resolved.history.path == (tmp_path / "data/history.json").resolve()


def test_chat_endpoint_validates_temperature() -> None:
    with pytest.raises(ValidationError):
        ChatEndpointConfig(provider="p", model="m", temperature=2.5)


def test_sampling_config_validates_ranges() -> None:
    with pytest.raises(ValidationError):
        SamplingConfig(top_p=0)
    with pytest.raises(ValidationError):
        SamplingConfig(presence_penalty=3)


def test_default_sampling_matches_narration_settings() -> None:
    config = AppConfigRoot()

    assert config.llm.narration_sampling.as_mapping() == {
        "temperature": 1.0,
        "top_p": 0.95,
        "top_k": 40.0,
        "frequency_penalty": 0.3,
        "presence_penalty": 0.6,
    }
    assert config.llm.scenarios_sampling.top_k == 60


def test_llm_config_validates_endpoint_provider_reference() -> None:
    with pytest.raises(ValidationError):
        LLMConfig.model_validate(
            {
                "providers": {
                    "p1": {"kind": "openai_compatible", "base_url": "https://x", "api_key_env": "KEY"},
                },
                "chat_endpoints": {
                    "narration_default": {"provider": "missing_provider", "model": "m"},
                },
                "routes": {"narration_chat": "narration_default"},
            }
        )


def test_llm_config_validates_route_reference() -> None:
    with pytest.raises(ValidationError):
        LLMConfig.model_validate(
            {
                "providers": {"p1": {"kind": "openai_compatible"}},
                "chat_endpoints": {"narration_default": {"provider": "p1", "model": "m"}},
                "routes": {"narration_chat": "narration_default", "scenarios_chat": "nope"},
            }
        )


def test_scenarios_route_falls_back_to_narration() -> None:
    config = AppConfigRoot()

    endpoint_name, endpoint, _ = config.llm.resolve_chat_route("scenarios")

    assert endpoint_name == config.llm.routes.narration_chat
    assert endpoint.model == config.llm.chat_endpoints[config.llm.routes.narration_chat].model


def test_media_provider_must_exist() -> None:
    with pytest.raises(ValidationError):
        AppConfigRoot.model_validate({"media": {"image": {"provider": "elsewhere"}}})

    config = AppConfigRoot.model_validate({"media": {"image": {"provider": "elsewhere", "enabled": False}}})
    assert config.media.image.enabled is False


def test_quota_limits_require_every_class() -> None:
    with pytest.raises(ValidationError):
        AppConfigRoot.model_validate({"quota": {"limits": {"text": 10, "image": 10}}})
    with pytest.raises(ValidationError):
        AppConfigRoot.model_validate({"quota": {"limits": {"text": -1, "image": 10, "voice": 10}}})


def test_defaults_cover_quota_playback_and_history() -> None:
    config = AppConfigRoot()

    assert config.quota.limit_for("text") == 100
    assert config.playback.choice_fallback_ms == 150
    assert config.playback.crossfade_ms == 1000
    assert config.history.max_prune_attempts == 20
    assert config.storage.busy_timeout_ms == 5000


def test_observability_config_defaults_and_validation() -> None:
    config = AppConfigRoot()
    assert config.observability.log_json_error_payload is True
    assert config.observability.json_error_payload_max_chars == 0

    with pytest.raises(ValidationError):
        AppConfigRoot.model_validate({"observability": {"json_error_payload_max_chars": -1}})


def test_unknown_sections_are_rejected() -> None:
    with pytest.raises(ValidationError):
        AppConfigRoot.model_validate({"storyteller": {}})


def test_load_config_merge_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    configs_dir = tmp_path / "configs"
    profiles_dir = configs_dir / "profiles"
    profiles_dir.mkdir(parents=True)

    (configs_dir / "default.yaml").write_text(
        textwrap.dedent(
            """
            app:
              data_dir: "./data-default"
              output_dir: "./out-default"
            llm:
              providers:
                openai:
                  kind: "openai_compatible"
                  base_url: "https://default-llm.example/v1"
                  api_key_env: "OPENAI_API_KEY"
              chat_endpoints:
                narration_default:
                  provider: "openai"
                  model: "gpt-default"
              routes:
                narration_chat: "narration_default"
            media:
              image:
                provider: "openai"
              voice:
                provider: "openai"
            quota:
              limits:
                text: 100
                image: 100
                voice: 100
            """
        ).strip(),
        encoding="utf-8",
    )

    (profiles_dir / "fast.yaml").write_text(
        textwrap.dedent(
            """
            app:
              output_dir: "./out-profile"
            llm:
              chat_endpoints:
                narration_default:
                  model: "gpt-profile"
            """
        ).strip(),
        encoding="utf-8",
    )

    (configs_dir / "custom.yaml").write_text(
        textwrap.dedent(
            """
            app:
              output_dir: "./out-custom"
            """
        ).strip(),
        encoding="utf-8",
    )

    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("STORY_ENGINE_DATA_DIR", str(tmp_path / "env-data"))
    monkeypatch.setenv("STORY_ENGINE_LLM_PROVIDER_OPENAI_BASE_URL", "https://env-llm.example/v1")
    monkeypatch.setenv("STORY_ENGINE_QUOTA_IMAGE_LIMIT", "7")

    config = load_config(
        config_path=configs_dir / "custom.yaml",
        profile="fast",
        overrides={"app": {"output_dir": "./out-override"}},
    )

    assert config.app.data_dir == (tmp_path / "env-data").resolve()
    assert config.app.output_dir == (tmp_path / "out-override").resolve()
    assert config.llm.chat_endpoints["narration_default"].model == "gpt-profile"
    assert config.llm.providers["openai"].base_url == "https://env-llm.example/v1"
    assert config.quota.limits == {"text": 100, "image": 7, "voice": 100}

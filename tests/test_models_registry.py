# ruff: noqa
import json
import math

import pytest

from mydeviceai.models.registry import ModelParamsUpdate
from mydeviceai.services.models.builtin import BUILTIN_FILE_NAME, BUILTIN_MODEL_ID
from mydeviceai.services.models.params import PARAM_RANGES, normalize_params
from mydeviceai.services.models.registry import ModelRegistry
from mydeviceai.utils import fs as fs_module


@pytest.fixture
def models_dir(tmp_path):
    path = tmp_path / "llama" / "models"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def state_file(tmp_path):
    return tmp_path / "llama" / "models.json"


def write_weights(models_dir, name, size=8):
    path = models_dir / name
    path.write_bytes(b"\0" * size)
    return path


def register(registry, models_dir, repo_id, file_name):
    path = write_weights(models_dir, file_name)
    return registry.register_download(f"{repo_id}/{file_name}", repo_id=repo_id, file_name=file_name, file_path=path)


def test_bootstrap_without_weights(state_file, models_dir):
    registry = ModelRegistry(state_file, models_dir)

    listing = registry.list_models()

    assert [m.id for m in listing.models] == [BUILTIN_MODEL_ID]
    assert listing.models[0].installed is False
    assert listing.active_model_id is None

    on_disk = json.loads(state_file.read_text(encoding="utf-8"))
    assert on_disk["version"] == 1
    assert on_disk["activeModelId"] is None
    assert on_disk["models"][0]["currentParams"]["temperature"] == 0.6


def test_bootstrap_with_builtin_weights_activates_it(state_file, models_dir):
    write_weights(models_dir, BUILTIN_FILE_NAME)
    registry = ModelRegistry(state_file, models_dir)

    assert registry.list_models().active_model_id == BUILTIN_MODEL_ID
    assert registry.get_active_model().installed is True


def test_load_recomputes_installed_and_heals_active(state_file, models_dir):
    present = write_weights(models_dir, "present.gguf")
    state_file.write_text(
        json.dumps(
            {
                "version": 1,
                "activeModelId": "gone",
                "models": [
                    {
                        "id": "gone",
                        "displayName": "Gone",
                        "source": "huggingface",
                        "filePath": str(models_dir / "gone.gguf"),
                        "installed": True,
                    },
                    {
                        "id": "present",
                        "displayName": "Present",
                        "source": "huggingface",
                        "filePath": str(present),
                        "installed": False,
                        "currentParams": {"temperature": 9, "topP": 0.5},
                    },
                    {"id": "broken"},
                ],
            }
        ),
        encoding="utf-8",
    )

    registry = ModelRegistry(state_file, models_dir)
    listing = registry.list_models()

    assert [m.id for m in listing.models] == ["gone", "present"]
    assert [m.installed for m in listing.models] == [False, True]
    assert listing.active_model_id == "present"
    assert listing.models[1].current_params.temperature == 2.0
    assert listing.models[1].current_params.top_p == 0.5

    # Normalized state is written back immediately
    on_disk = json.loads(state_file.read_text(encoding="utf-8"))
    assert on_disk["activeModelId"] == "present"
    assert on_disk["models"][0]["installed"] is False


def test_corrupt_state_file_is_recreated(state_file, models_dir):
    state_file.write_text("{", encoding="utf-8")

    registry = ModelRegistry(state_file, models_dir)

    assert [m.id for m in registry.list_models().models] == [BUILTIN_MODEL_ID]


def test_set_active_validates_target(state_file, models_dir):
    registry = ModelRegistry(state_file, models_dir)
    model = register(registry, models_dir, "org/repo", "a.gguf")

    missing = registry.set_active("nope")
    assert missing.ok is False
    assert "Model not found" in missing.error

    not_installed = registry.set_active(BUILTIN_MODEL_ID)
    assert not_installed.ok is False
    assert "not installed" in not_installed.error

    result = registry.set_active(model.id)
    assert result.ok is True
    assert result.active_model_id == model.id
    assert registry.get_state().last_used_model_id == model.id


def test_active_model_invariant_across_operations(state_file, models_dir):
    registry = ModelRegistry(state_file, models_dir)
    a = register(registry, models_dir, "org/a", "a.gguf")
    b = register(registry, models_dir, "org/b", "b.gguf")

    def check():
        state = registry.get_state()
        if state.active_model_id is not None:
            assert any(m.id == state.active_model_id and m.installed for m in state.models)

    for op in (
        lambda: registry.set_active(b.id),
        lambda: registry.set_active("missing"),
        lambda: registry.set_active(BUILTIN_MODEL_ID),
        lambda: (models_dir / "b.gguf").unlink(),
        registry.reload,
        lambda: registry.set_active(b.id),
        lambda: registry.delete_model(a.id),
        registry.reload,
    ):
        op()
        check()

    assert registry.get_state().active_model_id is None


def test_update_params_clamps_every_field(state_file, models_dir):
    registry = ModelRegistry(state_file, models_dir)
    model = register(registry, models_dir, "org/repo", "a.gguf")
    registry.update_params(model.id, {"temperature": 1.1, "topP": 0.8})

    result = registry.update_params(
        model.id,
        {"temperature": 5, "topP": math.nan, "topK": 12.6, "maxTokens": 1, "contextWindow": 10**9, "gpuLayers": -3},
    )

    assert result.ok is True
    params = result.model.current_params
    assert params.temperature == 2.0
    assert params.top_p == 0.8
    assert params.top_k == 13
    assert params.max_tokens == 16
    assert params.context_window == 131072
    assert params.gpu_layers == 0


def test_update_params_accepts_partial_model(state_file, models_dir):
    registry = ModelRegistry(state_file, models_dir)
    model = register(registry, models_dir, "org/repo", "a.gguf")

    result = registry.update_params(model.id, ModelParamsUpdate(max_tokens=2048))

    assert result.model.current_params.max_tokens == 2048
    assert result.model.current_params.temperature == 0.7


def test_update_params_unknown_model(state_file, models_dir):
    registry = ModelRegistry(state_file, models_dir)

    result = registry.update_params("nope", {"temperature": 1})

    assert result.ok is False
    assert "Model not found" in result.error


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"temperature": float("inf"), "topP": -1, "topK": 10**7},
        {"temperature": "hot", "maxTokens": True, "contextWindow": None},
        {"temperature": -0.5, "top_p": 2, "gpu_layers": 1000},
    ],
)
def test_normalized_params_always_within_range(raw):
    params = normalize_params(raw)
    for field, (low, high) in PARAM_RANGES.items():
        assert low <= getattr(params, field) <= high


def test_failed_persist_keeps_previous_state(state_file, models_dir, monkeypatch):
    registry = ModelRegistry(state_file, models_dir)
    model = register(registry, models_dir, "org/repo", "a.gguf")
    before = state_file.read_text(encoding="utf-8")

    def crash(src, dst):
        raise OSError("power loss")

    monkeypatch.setattr(fs_module.os, "replace", crash)
    result = registry.update_params(model.id, {"temperature": 1.5})
    monkeypatch.undo()

    assert result.ok is False
    assert state_file.read_text(encoding="utf-8") == before
    assert not state_file.with_name(state_file.name + ".tmp").exists()
    assert registry.get_model(model.id).current_params.temperature == 0.7
    json.loads(before)


def test_delete_model_removes_file_and_heals_active(state_file, models_dir):
    registry = ModelRegistry(state_file, models_dir)
    a = register(registry, models_dir, "org/a", "a.gguf")
    b = register(registry, models_dir, "org/b", "b.gguf")
    assert registry.get_state().active_model_id == a.id

    result = registry.delete_model(a.id)

    assert result.ok is True
    assert result.active_model_id == b.id
    assert not (models_dir / "a.gguf").exists()
    assert registry.get_model(a.id) is None


def test_register_download_activates_first_model_only(state_file, models_dir):
    registry = ModelRegistry(state_file, models_dir)
    first = register(registry, models_dir, "org/a", "a.gguf")
    second = register(registry, models_dir, "org/b", "b.gguf")

    assert first.source == "huggingface"
    assert first.installed is True
    assert first.size_bytes == 8
    assert registry.get_state().active_model_id == first.id
    assert second.id == "org/b/b.gguf"


def test_register_download_updates_existing_entry(state_file, models_dir):
    registry = ModelRegistry(state_file, models_dir)
    register(registry, models_dir, "org/a", "a.gguf")
    path = write_weights(models_dir, "a.gguf", size=32)

    updated = registry.register_download(
        "org/a/a.gguf", repo_id="org/a", file_name="a.gguf", file_path=path, quantization="Q8_0"
    )

    assert len(registry.list_models().models) == 2
    assert updated.size_bytes == 32
    assert updated.quantization == "Q8_0"


def test_state_survives_new_registry_instance(state_file, models_dir):
    registry = ModelRegistry(state_file, models_dir)
    model = register(registry, models_dir, "org/a", "a.gguf")
    registry.update_params(model.id, {"topK": 77})

    reopened = ModelRegistry(state_file, models_dir)

    assert reopened.get_model(model.id).current_params.top_k == 77
    assert reopened.get_state().active_model_id == model.id

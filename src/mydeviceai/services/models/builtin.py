"""The starter model seeded into a fresh registry."""

from pathlib import Path

from mydeviceai.models.registry import ManagedModel, ModelParamsUpdate
from mydeviceai.services.models.params import normalize_params

BUILTIN_MODEL_ID = "Qwen/Qwen3-4B-Q4_K_M"
BUILTIN_REPO_ID = "Qwen/Qwen3-4B-GGUF"
BUILTIN_FILE_NAME = "Qwen3-4B-Q4_K_M.gguf"
BUILTIN_DISPLAY_NAME = "Qwen3-4B Q4_K_M (Default)"
BUILTIN_CONTEXT_WINDOW = 8192

BUILTIN_RECOMMENDED = ModelParamsUpdate(temperature=0.6, top_p=0.9, max_tokens=1024, context_window=8192)


def builtin_model_path(models_dir: Path) -> Path:
    return models_dir / BUILTIN_FILE_NAME


def builtin_model(models_dir: Path) -> ManagedModel:
    """Descriptor for the default model, with `installed` taken from disk."""
    path = builtin_model_path(models_dir)
    exists = path.is_file()
    return ManagedModel(
        id=BUILTIN_MODEL_ID,
        display_name=BUILTIN_DISPLAY_NAME,
        source="builtin",
        repo_id=BUILTIN_REPO_ID,
        file_name=BUILTIN_FILE_NAME,
        file_path=str(path),
        size_bytes=path.stat().st_size if exists else None,
        quantization="Q4_K_M",
        context_window=BUILTIN_CONTEXT_WINDOW,
        description="Default starter model installed with MyDeviceAI Desktop.",
        recommended=BUILTIN_RECOMMENDED,
        current_params=normalize_params(BUILTIN_RECOMMENDED),
        installed=exists,
    )

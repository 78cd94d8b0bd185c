"""Model registry service.

Manages models.json as the single source of truth for known models, their
runtime parameters and the one active model the server should run. The
document is cached in memory after the first load; every mutation re-persists
the whole document atomically.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mydeviceai.exceptions import ModelNotFoundError, ModelNotInstalledError
from mydeviceai.logger import get_logger
from mydeviceai.models.registry import (
    STATE_VERSION,
    DeleteModelResult,
    ManagedModel,
    ModelList,
    ModelsState,
    SetActiveResult,
    UpdateParamsResult,
    utc_now,
)
from mydeviceai.services.models.builtin import builtin_model
from mydeviceai.services.models.params import normalize_params
from mydeviceai.utils.fs import read_json, write_json_atomic

logger = get_logger(__name__)

T = TypeVar("T")


def _file_exists(file_path: str | None) -> bool:
    return bool(file_path) and Path(file_path).is_file()  # type: ignore[arg-type]


def heal_active_model(state: ModelsState) -> None:
    """Point activeModelId at an installed model: keep it if valid, else the first installed, else None."""
    if state.active_model_id is not None:
        if any(m.id == state.active_model_id and m.installed for m in state.models):
            return
    fallback = next((m for m in state.models if m.installed), None)
    state.active_model_id = fallback.id if fallback else None


class ModelRegistry:
    """
    Registry of builtin and downloaded models.

    Registry operations return structured results; validation failures
    (unknown or uninstalled model) are never raised to callers.
    """

    def __init__(self, state_file: Path, models_dir: Path) -> None:
        """
        Initialize the registry.

        Args:
            state_file: Path of models.json
            models_dir: Directory holding weight files
        """
        self.state_file = state_file
        self.models_dir = models_dir
        self._state: ModelsState | None = None

    # Loading

    def _parse_model(self, raw: dict[str, Any]) -> ManagedModel | None:
        raw = dict(raw)
        params = raw.pop("currentParams", None) or raw.pop("current_params", None)
        try:
            model = ManagedModel.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(f"Dropping unreadable model entry: {e}", id=raw.get("id"))
            return None
        model.current_params = normalize_params(params if isinstance(params, dict) else None)
        model.installed = _file_exists(model.file_path)
        if not model.installed:
            logger.info("Model file missing; marking as not installed", id=model.id, file_path=model.file_path)
        return model

    def _load_from_disk(self) -> ModelsState | None:
        raw = read_json(self.state_file)
        if not isinstance(raw, dict) or not isinstance(raw.get("models"), list):
            return None

        models = [m for m in (self._parse_model(r) for r in raw["models"] if isinstance(r, dict)) if m]
        # Duplicate ids keep their first occurrence
        seen: set[str] = set()
        unique = []
        for model in models:
            if model.id not in seen:
                seen.add(model.id)
                unique.append(model)

        active = raw.get("activeModelId")
        state = ModelsState(
            version=STATE_VERSION,
            models=unique,
            active_model_id=active if isinstance(active, str) else None,
        )
        heal_active_model(state)
        last_used = raw.get("lastUsedModelId")
        state.last_used_model_id = last_used if isinstance(last_used, str) else state.active_model_id
        return state

    def _bootstrap(self) -> ModelsState:
        self.models_dir.mkdir(parents=True, exist_ok=True)
        model = builtin_model(self.models_dir)
        active = model.id if model.installed else None
        logger.info("Creating models registry", builtin_installed=model.installed)
        return ModelsState(models=[model], active_model_id=active, last_used_model_id=active)

    def _persist(self, state: ModelsState) -> None:
        state.version = STATE_VERSION
        write_json_atomic(self.state_file, state.model_dump(mode="json", by_alias=True))
        self._state = state

    def _ensure_state(self) -> ModelsState:
        if self._state is not None:
            return self._state

        state = self._load_from_disk()
        if state is None:
            if self.state_file.exists():
                logger.warning("models.json unreadable; recreating", path=str(self.state_file))
            state = self._bootstrap()

        # Persist the normalized copy so the file never drifts from derived truth
        self._persist(state)
        return state

    def _update(self, mutator: Callable[[ModelsState], T]) -> T:
        """Apply ``mutator`` to a copy, enforce the active-model invariant, persist, then swap in."""
        working = self._ensure_state().model_copy(deep=True)
        result = mutator(working)
        heal_active_model(working)
        self._persist(working)
        return result

    # Queries

    def get_state(self) -> ModelsState:
        return self._ensure_state()

    def list_models(self) -> ModelList:
        state = self._ensure_state()
        return ModelList(models=list(state.models), active_model_id=state.active_model_id)

    def get_model(self, model_id: str) -> ManagedModel | None:
        return next((m for m in self._ensure_state().models if m.id == model_id), None)

    def get_active_model(self) -> ManagedModel | None:
        state = self._ensure_state()
        if state.active_model_id is None:
            return None
        return next((m for m in state.models if m.id == state.active_model_id), None)

    def reload(self) -> ModelList:
        """Drop the cache and re-read models.json, re-validating every file."""
        self._state = None
        return self.list_models()

    # Mutations

    def set_active(self, model_id: str) -> SetActiveResult:
        """
        Make ``model_id`` the active model.

        Returns:
            ok with the new active id, or ok=False when the model is unknown or not installed
        """

        def mutate(state: ModelsState) -> str | None:
            model = next((m for m in state.models if m.id == model_id), None)
            if model is None:
                raise ModelNotFoundError(id=model_id)
            if not model.installed:
                raise ModelNotInstalledError(id=model_id)
            state.active_model_id = model_id
            state.last_used_model_id = model_id
            return model_id

        try:
            self._update(mutate)
        except Exception as e:
            logger.error(f"set_active failed: {e}", id=model_id)
            return SetActiveResult(ok=False, error=str(e))

        active_id = self._ensure_state().active_model_id
        logger.info("Active model updated", active_model_id=active_id)
        return SetActiveResult(ok=True, active_model_id=active_id)

    def update_params(self, model_id: str, update: BaseModel | dict[str, Any]) -> UpdateParamsResult:
        """
        Merge a partial parameter update into a model and re-clamp every field.

        Args:
            model_id: Target model
            update: Partial parameters; missing or NaN fields keep their current value
        """

        def mutate(state: ModelsState) -> ManagedModel:
            model = next((m for m in state.models if m.id == model_id), None)
            if model is None:
                raise ModelNotFoundError(id=model_id)
            model.current_params = normalize_params(update, base=model.current_params)
            model.updated_at = utc_now()
            return model

        try:
            model = self._update(mutate)
        except Exception as e:
            logger.error(f"update_params failed: {e}", id=model_id)
            return UpdateParamsResult(ok=False, error=str(e))

        logger.info("Model params updated", id=model_id)
        return UpdateParamsResult(ok=True, model=model)

    def delete_model(self, model_id: str) -> DeleteModelResult:
        """Remove a model entry and its weight file."""

        def mutate(state: ModelsState) -> ManagedModel:
            model = next((m for m in state.models if m.id == model_id), None)
            if model is None:
                raise ModelNotFoundError(id=model_id)
            state.models = [m for m in state.models if m.id != model_id]
            if state.last_used_model_id == model_id:
                state.last_used_model_id = None
            return model

        try:
            removed = self._update(mutate)
            Path(removed.file_path).unlink(missing_ok=True)
        except Exception as e:
            logger.error(f"delete_model failed: {e}", id=model_id)
            return DeleteModelResult(ok=False, error=str(e))

        active_id = self._ensure_state().active_model_id
        logger.info("Model deleted", id=model_id, active_model_id=active_id)
        return DeleteModelResult(ok=True, active_model_id=active_id)

    def register_download(
        self,
        model_id: str,
        *,
        repo_id: str,
        file_name: str,
        file_path: Path,
        display_name: str | None = None,
        quantization: str | None = None,
        context_window: int | None = None,
    ) -> ManagedModel:
        """
        Upsert a model after its file landed on disk.

        An existing entry with ``model_id`` is updated in place (re-download);
        otherwise a Hugging Face entry is created. If no model is active
        afterwards, this one becomes active.
        """
        size = file_path.stat().st_size

        def mutate(state: ModelsState) -> ManagedModel:
            now = utc_now()
            existing = next((m for m in state.models if m.id == model_id), None)
            if existing is not None:
                existing.display_name = display_name or existing.display_name or f"{repo_id} / {file_name}"
                existing.repo_id = repo_id
                existing.file_name = file_name
                existing.file_path = str(file_path)
                existing.size_bytes = size
                existing.downloaded_bytes = size
                existing.quantization = quantization or existing.quantization
                if context_window is not None:
                    existing.context_window = context_window
                existing.installed = True
                existing.current_params = normalize_params(None, base=existing.current_params)
                existing.updated_at = now
                model = existing
            else:
                seed = {"context_window": context_window} if context_window is not None else None
                model = ManagedModel(
                    id=model_id,
                    display_name=display_name or f"{repo_id} / {file_name}",
                    source="huggingface",
                    repo_id=repo_id,
                    file_name=file_name,
                    file_path=str(file_path),
                    size_bytes=size,
                    downloaded_bytes=size,
                    quantization=quantization,
                    context_window=context_window,
                    current_params=normalize_params(seed),
                    installed=True,
                    created_at=now,
                    updated_at=now,
                )
                state.models.append(model)

            if state.active_model_id is None:
                state.active_model_id = model.id
                state.last_used_model_id = model.id
            return model

        model = self._update(mutate)
        logger.info("Model registered", id=model.id, file_path=model.file_path)
        return model

"""Configuration schema for zip-aligner using Pydantic."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, PositiveInt, field_validator, model_validator

from .archive import DEFAULT_CHUNK_SIZE
from .errors import ConfigurationError

DEFAULT_INPUT = Path("bdt.v68.dat")
DEFAULT_OUTPUT = Path("bdt.v68.aligned.dat")


class AlignConfig(BaseModel):
    """Settings for one alignment run."""

    input: Path = DEFAULT_INPUT
    """ZIP archive to be aligned."""

    output: Path = DEFAULT_OUTPUT
    """Where the aligned archive is written."""

    alignment: PositiveInt = 4
    """Alignment in bytes, e.g. 4 provides 32-bit alignment."""

    overwrite: bool = False
    """Allow the output to replace the input when both are the same file."""

    verbose: bool = False
    """Print every per-entry decision."""

    chunk_size: PositiveInt = DEFAULT_CHUNK_SIZE
    """Size of the buffer used to copy entry payloads."""

    verify: bool = False
    """Re-read the output after the run and check every entry."""

    report: Optional[Path] = None
    """Optional path of a JSON report of the padding decisions."""

    @field_validator("input", "output", mode="before")
    @classmethod
    def _path_not_empty(cls, value: Any) -> Any:
        if value is None or str(value).strip() == "":
            raise ConfigurationError("Input and output paths must not be empty")
        return value

    @model_validator(mode="after")
    def _refuse_silent_overwrite(self) -> AlignConfig:
        if self.input.resolve() == self.output.resolve() and not self.overwrite:
            raise ConfigurationError(
                f"Refusing to overwrite output file '{self.output}' without -f being set"
            )
        return self

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> AlignConfig:
        """Loads and validates an AlignConfig from a YAML file."""
        return cls.model_validate(_read_yaml(path))

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None, **overrides: Any) -> AlignConfig:
        """
        Builds the effective configuration.

        Values from the YAML file at `config_path` (if any) are overridden by
        every keyword argument that is not None.
        """
        data = _read_yaml(config_path) if config_path is not None else {}
        data.update({key: value for key, value in overrides.items() if value is not None})
        return cls.model_validate(data)


def _read_yaml(path: Union[str, Path]) -> dict:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing YAML config: {str(e)}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data

from __future__ import annotations
from dataclasses import dataclass

from .errors import ConfigError
from .utils import normalize_prefix


@dataclass(frozen=True)
class Config:
    bucket: str
    prefix: str
    output_dir: str
    dry_run: bool = False
    not_found_is_error: bool = False
    max_concurrent: int = 8
    max_objects: int = 1000
    verbose: bool = False
    progress: bool = False

    @classmethod
    def create(
        cls,
        bucket: str,
        prefix: str,
        output_dir: str,
        dry_run: bool = False,
        not_found_is_error: bool = False,
        max_concurrent: int = 8,
        max_objects: int = 1000,
        verbose: bool = False,
        progress: bool = False,
    ) -> "Config":
        """Validate raw command-line values and normalize the prefix."""
        if not bucket:
            raise ConfigError("bucket must not be empty")
        if not output_dir:
            raise ConfigError("output directory must not be empty")
        if max_concurrent < 0:
            raise ConfigError("--max-concurrent must be greater than or equal to zero")
        if max_objects < 0:
            raise ConfigError("--max-objects must be greater than or equal to zero")
        return cls(
            bucket=bucket,
            prefix=normalize_prefix(prefix or ""),
            output_dir=output_dir,
            dry_run=dry_run,
            not_found_is_error=not_found_is_error,
            max_concurrent=max_concurrent,
            max_objects=max_objects,
            verbose=verbose,
            progress=progress,
        )

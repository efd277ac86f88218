# cli.py
from __future__ import annotations

import logging
from typing import Optional

import typer
import click
import yaml

from .config import Config
from .core import ObjectStore, get_store
from .download import download_prefix
from .errors import ConfigError, GsDownloadError, setup_logging
from .utils import FileSink, read_yaml
from .version import __version__

app = typer.Typer(
    add_completion=False,
    help="Bulk download objects from a Google Cloud Storage bucket",
)

# ---------------- Helpers ----------------
def _load_cfg(config_path: Optional[str]) -> dict:
    """
    Load YAML config if given and present, otherwise return {}.
    A missing file is not an error; a malformed one is.
    """
    if not config_path:
        return {}
    try:
        cfg = read_yaml(config_path)
    except FileNotFoundError:
        return {}
    except OSError as e:
        raise ConfigError(f"cannot read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid config file {config_path}: {e}") from e
    if not isinstance(cfg, dict):
        return {}
    return cfg

def _store_from_cfg(cfg: dict, backend: Optional[str]) -> ObjectStore:
    """
    Resolve the backend and its settings with priority:
    CLI flags -> ENV (handled inside the SDKs) -> YAML.
    """
    scfg = (cfg.get("storage") or {}) if cfg else {}
    if not isinstance(scfg, dict):
        raise ConfigError(f"'storage' in config must be a mapping, got {type(scfg).__name__}")
    return get_store(
        backend or scfg.get("backend", "gs"),
        project=scfg.get("project"),
        aws_profile=scfg.get("profile"),
        aws_access_key_id=scfg.get("access_key_id"),
        aws_secret_access_key=scfg.get("secret_access_key"),
        region_name=scfg.get("region"),
        endpoint_url=scfg.get("endpoint_url"),
        retries_max_attempts=scfg.get("retries_max_attempts"),
        retries_mode=scfg.get("retries_mode"),
        connect_timeout=scfg.get("connect_timeout"),
        read_timeout=scfg.get("read_timeout"),
    )

def _version_callback(value: bool):
    if value:
        typer.echo(__version__)
        raise typer.Exit()

# ---------------- DOWNLOAD ----------------
@app.command()
def download(
    bucket: str = typer.Argument(..., help="Bucket to download from"),
    prefix: str = typer.Argument(..., help="Only objects whose names start with this prefix"),
    output_directory: str = typer.Argument(..., metavar="OUTPUT_DIRECTORY", help="Local destination directory"),
    dry_run: bool = typer.Option(
        False, "--dry-run",
        help="Display a list of the files that will be downloaded and then exit without downloading them",
    ),
    max_concurrent: int = typer.Option(8, "--max-concurrent", help="The maximum number of concurrent downloads (0=unlimited)"),
    max_objects: int = typer.Option(1000, "--max-objects", help="The maximum number of objects to download (0=unlimited)"),
    not_found_is_error: bool = typer.Option(
        False, "--error",
        help="Exit with non-zero exit code if no objects were found matching the specified prefix",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Include additional information about each object that is downloaded",
    ),
    store: Optional[str] = typer.Option(
        None, "--store",
        help="Storage backend [default: gs]",
        case_sensitive=False,
        click_type=click.Choice(["gs", "s3"], case_sensitive=False),
    ),
    progress: bool = typer.Option(False, "--progress", help="Show progress bar"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    version: Optional[bool] = typer.Option(
        None, "--version",
        callback=_version_callback,
        is_eager=True,
        help="Print version information and exit",
    ),
):
    """
    Download every object under PREFIX in BUCKET into OUTPUT_DIRECTORY,
    keeping the key structure below the prefix.
    """
    setup_logging(level=logging.INFO if verbose else logging.WARNING)
    log = logging.getLogger("gsdownload.cli")

    try:
        cfg = Config.create(
            bucket,
            prefix,
            output_directory,
            dry_run=dry_run,
            not_found_is_error=not_found_is_error,
            max_concurrent=max_concurrent,
            max_objects=max_objects,
            verbose=verbose,
            progress=progress,
        )
        object_store = _store_from_cfg(_load_cfg(config), store)
        with object_store:
            res = download_prefix(object_store, FileSink(), cfg, echo=typer.echo)
    except GsDownloadError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if cfg.dry_run:
        log.info("Planned: %d items (dry-run), Dest=%s", res["stats"]["total"], res["stats"]["dst_root"])

"""
report-kit — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, key storage, recipe validation or execution).
  5. Report result to stdout.

Install and run::

    pip install -e .
    report-kit --help
    report-kit init-db
    report-kit list-sources
    report-kit set-plan --user alice --tier pro
    report-kit set-key --user alice --provider coingecko --key-type demo
    report-kit validate-recipe recipes/market.json --user alice --format excel
    report-kit run-recipe recipes/market.json --user alice --format excel
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="report-kit",
    help="Recipe execution and report assembly for crypto market data.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from report_kit.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    from report_kit.utils.logging import configure_logging
    configure_logging(config.logging)


def _load_registry_or_exit(config):
    from report_kit.governance.registry import load_source_registry

    try:
        return load_source_registry(config.policy.sources_config_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Source registry invalid: {exc}", err=True)
        raise typer.Exit(code=1)


@contextmanager
def _open_db(config, db_path: Optional[str] = None):
    """Connection with the schema applied (idempotent)."""
    from report_kit.db.connection import get_connection
    from report_kit.db.schema import apply_schema

    with get_connection(
        db_path or config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)
        yield conn


def _load_recipe_or_exit(recipe_file: str):
    from pydantic import ValidationError

    from report_kit.models.recipe import Recipe

    path = Path(recipe_file)
    if not path.exists():
        typer.echo(f"[ERROR] Recipe file not found: {path}", err=True)
        raise typer.Exit(code=1)
    try:
        return Recipe.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except json.JSONDecodeError as exc:
        typer.echo(f"[ERROR] Recipe JSON parse error: {exc}", err=True)
        raise typer.Exit(code=1)
    except ValidationError as exc:
        typer.echo(f"[ERROR] Recipe does not match the recipe schema:\n{exc}", err=True)
        raise typer.Exit(code=1)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Initialize the SQLite database.  Safe to run multiple times."""
    from report_kit.db.schema import ALL_TABLE_NAMES

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")
    with _open_db(config, target_path):
        pass

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(False, "--full", help="Print full config including all fields."),
) -> None:
    """Validate the configuration and the source registry.

    Exits with code 1 if either fails validation, or if a dataset kind
    refers to a provider with no source classification.
    """
    from report_kit.recipe.catalog import providers_in_catalog

    config = _load_config_or_exit(config_path)
    registry = _load_registry_or_exit(config)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:     {config.database.db_path}")
    typer.echo(f"  Max concurrency:   {config.engine.max_concurrency}")
    typer.echo(f"  Dataset timeout:   {config.engine.dataset_timeout_seconds}s")
    typer.echo(f"  Strict validation: {config.policy.strict_validation}")
    typer.echo(f"  Allowlist:         {', '.join(config.policy.redistributable_allowlist) or '(none)'}"
               f"{' (enforced)' if config.policy.enforce_allowlist else ''}")
    typer.echo(f"  Sources:           {len(registry)}")
    typer.echo(f"  Vault master key:  {'set' if config.master_key() else 'NOT SET'}")
    typer.echo(f"  Log level:         {config.logging.level}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    missing = [p for p in providers_in_catalog() if p not in registry]
    if missing:
        typer.echo("")
        typer.echo(f"[ERROR] Providers without a source classification: {', '.join(missing)}", err=True)
        raise typer.Exit(code=1)

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("list-sources")
def list_sources(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """List every classified data source."""
    from report_kit.governance.reporter import format_source_table

    config = _load_config_or_exit(config_path)
    registry = _load_registry_or_exit(config)

    typer.echo(f"Registered sources ({len(registry)}):")
    typer.echo("")
    typer.echo(format_source_table(registry.list_sources()))


@app.command("list-kinds")
def list_kinds() -> None:
    """List the dataset kinds a recipe may request."""
    from report_kit.governance.reporter import format_kind_table
    from report_kit.recipe.catalog import DATASET_KINDS

    typer.echo(f"Dataset kinds ({len(DATASET_KINDS)}):")
    typer.echo("")
    typer.echo(format_kind_table(DATASET_KINDS))


@app.command("set-plan")
def set_plan(
    user_id: str = typer.Option(..., "--user", help="User identifier."),
    tier: str = typer.Option(..., "--tier", help="free, pro or premium."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Assign a plan tier to a user."""
    from report_kit.db.repositories import UserPlanRepository

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _open_db(config, db_path) as conn:
        try:
            plan = UserPlanRepository(conn).set_user_plan(user_id, tier)
        except ValueError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)

    typer.echo(f"[OK] {plan.user_id} is on the {plan.tier} plan.")


@app.command("set-key")
def set_key(
    user_id: str = typer.Option(..., "--user", help="User identifier."),
    provider: str = typer.Option(..., "--provider", help="Source id, e.g. coingecko."),
    key_type: str = typer.Option("demo", "--key-type", help="demo or pro."),
    api_key: str = typer.Option(
        ..., "--api-key", prompt=True, hide_input=True, help="Provider API key (prompted if omitted).",
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Encrypt and store a user's API key for one provider."""
    from report_kit.db.repositories import ProviderKeyRepository
    from report_kit.models.credentials import ProviderKeyRecord
    from report_kit.vault.key_vault import KeyVault, key_hint

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    registry = _load_registry_or_exit(config)

    provider = provider.strip().lower()
    source = registry.find(provider)
    if source is None:
        typer.echo(f"[ERROR] Unknown provider '{provider}'.", err=True)
        raise typer.Exit(code=1)
    if key_type not in ("demo", "pro"):
        typer.echo(f"[ERROR] --key-type must be demo or pro, got '{key_type}'.", err=True)
        raise typer.Exit(code=1)
    if key_type not in source.credential_tiers:
        typer.echo(
            f"[ERROR] {source.display_name} does not accept {key_type} keys "
            f"(tiers: {', '.join(source.credential_tiers)}).",
            err=True,
        )
        raise typer.Exit(code=1)

    vault = KeyVault(config.master_key())
    if not vault.available:
        typer.echo(f"[ERROR] Key vault unavailable: set {config.vault.master_key_env}.", err=True)
        raise typer.Exit(code=1)
    try:
        ciphertext = vault.encrypt(api_key.strip())
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    with _open_db(config, db_path) as conn:
        stored = ProviderKeyRepository(conn).save_key(
            ProviderKeyRecord(
                user_id=user_id,
                provider=provider,
                ciphertext=ciphertext,
                key_type=key_type,
                key_hint=key_hint(api_key.strip()),
            )
        )

    typer.echo(f"[OK] Stored {stored.key_type} key for {stored.provider} (ends with {stored.key_hint}).")


@app.command("validate-recipe")
def validate_recipe(
    recipe_file: str = typer.Argument(..., help="Path to a recipe JSON file."),
    user_id: str = typer.Option(..., "--user", help="User identifier (for plan checks)."),
    output_format: str = typer.Option("json", "--format", help="excel (download) or json (preview)."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Validate a recipe without fetching anything.  Exits 1 if invalid."""
    from report_kit.db.repositories import UserPlanRepository
    from report_kit.errors import SourceConfigurationError
    from report_kit.governance.redistribution import RedistributionPolicy
    from report_kit.governance.reporter import format_messages
    from report_kit.recipe.validator import RecipeValidator, purpose_for_format

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    registry = _load_registry_or_exit(config)
    recipe = _load_recipe_or_exit(recipe_file)

    try:
        purpose = purpose_for_format(output_format)
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    policy = RedistributionPolicy(
        registry,
        allowlist=config.policy.redistributable_allowlist,
        enforce_allowlist=config.policy.enforce_allowlist,
    )
    validator = RecipeValidator(registry, policy, strict_policy=config.policy.strict_validation)

    with _open_db(config, db_path) as conn:
        plan = UserPlanRepository(conn).get_user_plan(user_id)
    try:
        result = validator.validate(recipe, purpose, plan)
    except SourceConfigurationError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Recipe '{recipe.id}' for {purpose.value} on the {plan.tier} plan:")
    if result.warnings:
        typer.echo(format_messages("WARN", result.warnings))
    if not result.valid:
        typer.echo(format_messages("ERROR", result.errors), err=True)
        if result.plan_only_failure and result.plan_check is not None:
            typer.echo(f"  Required plan: {result.plan_check.required_plan}", err=True)
        raise typer.Exit(code=1)

    typer.echo("[OK] Recipe valid.")


@app.command("run-recipe")
def run_recipe(
    recipe_file: str = typer.Argument(..., help="Path to a recipe JSON file."),
    user_id: str = typer.Option(..., "--user", help="User identifier."),
    output_format: str = typer.Option("json", "--format", help="excel (download) or json (preview)."),
    out_dir: Optional[str] = typer.Option(
        None, "--out-dir", help="Output directory (default: [reporting] output_dir).",
    ),
    deadline: Optional[float] = typer.Option(
        None, "--deadline", help="Cancel unfinished datasets after this many seconds.",
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Execute a recipe and write the report artifact.

    Exits 1 on validation, plan or configuration errors, and when the run
    produced no usable report (no dataset succeeded or a mandatory one failed).
    """
    import asyncio

    from report_kit.errors import PlanIncompatibleError, RecipeValidationError, ReportKitError
    from report_kit.governance.reporter import format_messages
    from report_kit.reporting.export import write_artifact
    from report_kit.service import ReportRequest, ReportService, build_http_client

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    registry = _load_registry_or_exit(config)
    recipe = _load_recipe_or_exit(recipe_file)
    request = ReportRequest(user_id=user_id, recipe=recipe, format=output_format)

    async def _run(conn):
        async with build_http_client(config) as client:
            service = ReportService.from_config(config, conn, client, registry=registry)
            return await service.run(request, deadline_seconds=deadline)

    with _open_db(config, db_path) as conn:
        try:
            outcome = asyncio.run(_run(conn))
        except PlanIncompatibleError as exc:
            typer.echo(f"[ERROR] {exc.reason} (required plan: {exc.required_plan})", err=True)
            raise typer.Exit(code=1)
        except RecipeValidationError as exc:
            typer.echo(f"[ERROR] Recipe '{recipe.id}' is invalid:", err=True)
            typer.echo(format_messages("ERROR", exc.errors), err=True)
            raise typer.Exit(code=1)
        except (ReportKitError, ValueError) as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)

    result = outcome.result
    for dataset in result.datasets:
        detail = f"{len(dataset.rows)} rows" if dataset.succeeded else dataset.error.code.value
        cache = " (cache)" if dataset.from_cache else ""
        typer.echo(f"  {dataset.dataset_id:<24} {dataset.status.value:<18} {detail}{cache}")
    if outcome.artifact.warnings:
        typer.echo(format_messages("WARN", outcome.artifact.warnings))

    target_dir = out_dir or config.reporting.output_dir
    path = write_artifact(outcome.artifact, target_dir)
    typer.echo(f"  Artifact: {path}")
    typer.echo(f"  Time:     {result.metadata.execution_time_ms} ms")

    if not result.success:
        typer.echo("[ERROR] Report incomplete: no dataset succeeded or a mandatory dataset failed.", err=True)
        raise typer.Exit(code=1)
    typer.echo("[OK] Report written.")

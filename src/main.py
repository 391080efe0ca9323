"""
Client Pulse - CLI Entry Point

Command-line interface for managing the client sentiment backend.
"""

import asyncio
import json
import sys
from pathlib import Path

import click

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import get_config
from src.core.database import DatabaseManager
from src.core.logging_config import setup_logging
from src.core.records import ClientMapping, ClientProfile


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--log-file", type=str, help="Log file path")
@click.pass_context
def cli(ctx, verbose, log_file):
    """Client Pulse CLI.

    Relationship sentiment analysis over Fathom meeting transcripts.
    """
    ctx.ensure_object(dict)

    log_level = "DEBUG" if verbose else "INFO"
    setup_logging(log_level=log_level, log_file=log_file)

    ctx.obj["verbose"] = verbose
    ctx.obj["log_file"] = log_file


def _services():
    from src.web.services import build_services
    return build_services(get_config())


# ============================================================================
# MAIN OPERATIONS
# ============================================================================


@cli.command()
@click.option("--host", default="0.0.0.0", help="Web server host")
@click.option("--port", default=8000, type=int, help="Web server port")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
@click.pass_context
def serve(ctx, host, port, reload):
    """Start the API server (webhook, analysis and client endpoints).

    Example:
        python -m src.main serve --port 8000
    """
    from src.web.app import run_server

    click.echo(f"🌐 Starting API server on {host}:{port}")
    run_server(host=host, port=port, reload=reload, log_file=ctx.obj.get("log_file") or "logs/web.log")


@cli.command()
@click.option("--loop", is_flag=True, help="Run daily at the configured hour until stopped")
@click.option("--dry-run", is_flag=True, help="Resolve meetings but don't queue transcripts")
def sync(loop, dry_run):
    """Pull recent Fathom meetings into client queues.

    Examples:
        python -m src.main sync               # Single sync cycle
        python -m src.main sync --dry-run     # Show what would be queued
        python -m src.main sync --loop        # Run daily
    """
    services = _services()

    if not services.config.fathom.is_configured():
        click.echo("❌ FATHOM_API_KEY not set in .env", err=True)
        sys.exit(1)

    async def _run_once():
        stats = await services.poller.run_sync(dry_run=dry_run)
        await services.orchestrator.wait_for_background()
        return stats

    if loop:
        app = services.config.app
        click.echo(f"📡 Syncing daily at {app.sync_run_hour:02d}:00 {app.sync_timezone}")
        click.echo("⚠️  Press Ctrl+C to stop")
        try:
            asyncio.run(services.poller.run_loop())
        except KeyboardInterrupt:
            click.echo("\n🛑 Sync loop stopped")
        return

    click.echo(f"▶️  Running single sync cycle{' (dry run)' if dry_run else ''}")
    try:
        stats = asyncio.run(_run_once())
    except Exception as e:
        click.echo(f"❌ Sync failed: {e}", err=True)
        sys.exit(1)

    click.echo("\n📊 Sync Results")
    click.echo("=" * 80)
    for name, value in stats.items():
        click.echo(f"  {name.replace('_', ' ').title()}: {value}")
    click.echo("")


@cli.command()
@click.argument("client_id")
@click.option("--force", is_flag=True, help="Analyze even if nothing was queued since the last run")
def analyze(client_id, force):
    """Analyze a client's queued transcripts now.

    Example:
        python -m src.main analyze acme --force
    """
    services = _services()

    async def _run():
        outcome = await services.orchestrator.trigger_manual(client_id, force=force)
        await services.orchestrator.wait_for_background()
        return outcome

    try:
        outcome = asyncio.run(_run())
    except ValueError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"❌ Analysis failed: {e}", err=True)
        sys.exit(1)

    bottom_line = outcome.result.get("bottomLine", {})
    if outcome.status == "unchanged":
        click.echo(f"ℹ️  No new transcripts, latest analysis is #{outcome.record.id} (use --force to re-run)")
    else:
        click.echo(f"✅ Analysis #{outcome.record.id if outcome.record else '-'} complete")
    click.echo(f"   Trajectory: {bottom_line.get('trajectory', 'Unknown')}")
    click.echo(f"   Churn Risk: {bottom_line.get('churnRisk', 'Unknown')}")
    if bottom_line.get("summary"):
        click.echo(f"   Summary:    {bottom_line['summary']}")


# ============================================================================
# CLIENT MANAGEMENT
# ============================================================================


@cli.group()
def clients():
    """Client management."""
    pass


@clients.command("add")
@click.argument("name")
@click.option("--id", "client_id", help="Client id (default: generated)")
@click.option("--pod", default="", help="Pod name")
@click.option("--spend", default="", help="Average monthly spend")
@click.option("--duration", default="", help="Relationship duration")
@click.option("--notes", default="", help="Profile notes")
@click.option("--owner", help="Owner user id")
def clients_add(name, client_id, pod, spend, duration, notes, owner):
    """Add a client.

    Example:
        python -m src.main clients add "Acme Corp" --id acme --spend 25000
    """
    try:
        services = _services()
        client = services.clients.create(
            ClientProfile(
                id=client_id or "",
                name=name,
                pod=pod,
                monthly_spend=spend,
                duration=duration,
                notes=notes,
                owner_id=owner,
            )
        )
        click.echo(f"✅ Added client {client.name} (ID: {client.id})")
    except Exception as e:
        click.echo(f"❌ Failed to add client: {e}", err=True)
        sys.exit(1)


@clients.command("list")
@click.option("--owner", help="Only clients owned by this user id")
def clients_list(owner):
    """List clients with queue status."""
    services = _services()
    items = services.clients.list_clients(owner_id=owner)

    click.echo(f"\n📋 Clients ({len(items)}):")
    click.echo("=" * 80)
    for client in items:
        queue = services.queue_manager.get_window(client.id)
        queued = len(queue.transcripts) if queue else 0
        ready = "ready" if services.queue_manager.queue_is_ready(queue) else "waiting"
        click.echo(f"\n{client.name} ({client.id})")
        if client.pod:
            click.echo(f"  Pod:   {client.pod}")
        click.echo(f"  Queue: {queued}/3 ({ready})")
        click.echo(f"  Analyses: {services.analyses.count_for_client(client.id)}")
    click.echo("")


@cli.group()
def mapping():
    """Meeting-to-client mapping rules."""
    pass


@mapping.command("set")
@click.argument("client_id")
@click.option("--email", "emails", multiple=True, help="Participant email (repeatable)")
@click.option("--title-pattern", help="Regex matched against the meeting title")
@click.option("--meeting-id", "meeting_ids", multiple=True, help="Fathom meeting id (repeatable)")
def mapping_set(client_id, emails, title_pattern, meeting_ids):
    """Route Fathom meetings to a client.

    Participant emails are checked first, then the title pattern, then
    explicit meeting ids.

    Example:
        python -m src.main mapping set acme --email ceo@acme.com --title-pattern "acme.*weekly"
    """
    services = _services()
    if services.clients.get(client_id) is None:
        click.echo(f"❌ Client {client_id} not found", err=True)
        sys.exit(1)

    saved = services.mappings.save(
        ClientMapping(
            client_id=client_id,
            participant_emails=[e.strip().lower() for e in emails],
            title_pattern=title_pattern,
            meeting_ids=list(meeting_ids),
        )
    )
    click.echo(f"✅ Mapping saved for {client_id}")
    click.echo(json.dumps(saved.to_dict(), indent=2))


# ============================================================================
# DATABASE MANAGEMENT
# ============================================================================


@cli.group()
def db():
    """Database management commands."""
    pass


@db.command("init")
@click.option("--drop", is_flag=True, help="Drop existing tables first (DESTRUCTIVE!)")
def db_init(drop):
    """Initialize database schema.

    Example:
        python -m src.main db init
        python -m src.main db init --drop  # Recreate all tables
    """
    try:
        config = get_config()
        db = DatabaseManager(config.database.connection_string)

        if drop:
            if not click.confirm("⚠️  This will drop all existing tables. Are you sure?"):
                click.echo("Aborted.")
                return
            click.echo("🗑️  Dropping existing tables...")
            db.drop_tables()

        click.echo("📦 Creating database tables...")
        db.create_tables()

        click.echo("✅ Database initialized successfully")

    except Exception as e:
        click.echo(f"❌ Failed to initialize database: {e}", err=True)
        sys.exit(1)


@db.command("status")
def db_status():
    """Show row counts and recent sync runs."""
    try:
        services = _services()
        stats = services.db.get_stats()

        click.echo("\n📊 Database Status")
        click.echo("=" * 80)
        for table, count in stats.items():
            click.echo(f"  {table}: {count}")

        runs = services.sync_runs.recent(limit=5)
        if runs:
            click.echo("\nRecent Sync Runs:")
            for run in runs:
                click.echo(
                    f"  {run['started_at']}  {run['status']:<10} "
                    f"queued={run['transcripts_queued']} errors={run['errors']}"
                )

        click.echo("\n" + "=" * 80 + "\n")

    except Exception as e:
        click.echo(f"❌ Failed to get database status: {e}", err=True)
        sys.exit(1)


# ============================================================================
# HEALTH CHECKS
# ============================================================================


@cli.command()
def health():
    """Test system connections (Database, Analyzer, Fathom, Graph API).

    Example:
        python -m src.main health
    """
    click.echo("\n🏥 Testing System Health")
    click.echo("=" * 80)

    config = get_config()
    all_healthy = True

    click.echo("\n📦 Database Connection...")
    try:
        DatabaseManager(config.database.connection_string).ping()
        click.echo("   ✅ Database: Connected")
    except Exception as e:
        click.echo(f"   ❌ Database: Failed ({e})")
        all_healthy = False

    # Don't call the models here (costs money)
    click.echo("\n🤖 Analyzer...")
    if config.gemini.is_configured():
        click.echo(f"   ✅ Gemini: Configured ({config.gemini.model})")
    if config.claude.is_configured():
        click.echo(f"   ✅ Claude: Configured ({config.claude.model})")
    if not config.analyzer_configured():
        click.echo("   ❌ Analyzer: No API key configured")
        all_healthy = False

    click.echo("\n🎙️  Fathom...")
    if not config.fathom.webhook_secret:
        click.echo("   ❌ Webhook secret not configured")
        all_healthy = False
    else:
        click.echo("   ✅ Webhook secret configured")
    if config.fathom.is_configured():
        try:
            from src.fathom.client import FathomClient
            FathomClient(config.fathom).test_connection()
            click.echo("   ✅ Fathom API: Connected")
        except Exception as e:
            click.echo(f"   ❌ Fathom API: Failed ({e})")
            all_healthy = False
    else:
        click.echo("   ⚠️  Fathom API: Key not configured (sync disabled)")

    if config.app.email_enabled:
        click.echo("\n📡 Microsoft Graph API...")
        try:
            from src.graph.client import GraphAPIClient
            GraphAPIClient(config.graph_api).test_connection()
            click.echo("   ✅ Graph API: Connected")
        except Exception as e:
            click.echo(f"   ❌ Graph API: Failed ({e})")
            all_healthy = False

    click.echo("\n" + "=" * 80)
    if all_healthy:
        click.echo("✅ All systems operational")
        click.echo("")
        sys.exit(0)
    else:
        click.echo("⚠️  Some systems have issues")
        click.echo("")
        sys.exit(1)


# ============================================================================
# CONFIGURATION MANAGEMENT
# ============================================================================


@cli.group()
def config():
    """Configuration management."""
    pass


@config.command("show")
def config_show():
    """Show current configuration (non-sensitive)."""
    cfg = get_config()

    click.echo("\n⚙️  Current Configuration")
    click.echo("=" * 80)

    click.echo("\n📊 Runtime Settings (config.yaml):")
    click.echo(f"  Daily Sync: {cfg.app.sync_run_hour:02d}:00 {cfg.app.sync_timezone}")
    click.echo(f"  Sync Lookback: {cfg.app.sync_lookback_hours} hours")
    click.echo(f"  Dedupe Meeting IDs: {'Enabled' if cfg.app.dedupe_meeting_ids else 'Disabled'}")
    click.echo(f"  Manual Trigger Needs New Transcripts: {cfg.app.manual_trigger_requires_new_transcripts}")
    click.echo(f"  Primary Model: {'Gemini' if cfg.app.gemini_primary else 'Claude'}")
    click.echo(f"  Analysis Temperature: {cfg.app.analysis_temperature}")
    click.echo(f"  Dashboard URL: {cfg.app.dashboard_url}")
    click.echo(f"  Email Notifications: {'Enabled' if cfg.app.email_enabled else 'Disabled'}")
    click.echo(f"  Slack Notifications: {'Enabled' if cfg.app.slack_enabled else 'Disabled'}")

    click.echo("\n🔐 Credentials Status (.env):")
    click.echo(f"  Database: {'✅ Set' if cfg.database.url or cfg.database.password else '❌ Not set'}")
    click.echo(f"  Gemini API: {'✅ Set' if cfg.gemini.is_configured() else '❌ Not set'}")
    click.echo(f"  Claude API: {'✅ Set' if cfg.claude.is_configured() else '❌ Not set'}")
    click.echo(f"  Fathom API: {'✅ Set' if cfg.fathom.api_key else '❌ Not set'}")
    click.echo(f"  Fathom Webhook Secret: {'✅ Set' if cfg.fathom.webhook_secret else '❌ Not set'}")
    click.echo(f"  Graph API: {'✅ Set' if cfg.graph_api.is_configured() else '❌ Not set'}")
    click.echo("")


@config.command("validate")
def config_validate():
    """Validate configuration and report problems."""
    errors = get_config().validate()

    if not errors:
        click.echo("✅ Configuration is valid")
        return

    click.echo("\n⚠️  Configuration issues:")
    for error in errors:
        click.echo(f"  - {error}")
    click.echo("")
    sys.exit(1)


# ============================================================================
# AUTH
# ============================================================================


@cli.group()
def auth():
    """API token helpers."""
    pass


@auth.command("token")
@click.argument("uid")
@click.argument("email")
@click.option("--hours", default=8, type=int, help="Token lifetime in hours")
def auth_token(uid, email, hours):
    """Issue an API token for a user (local testing and scripts)."""
    from src.auth.tokens import create_access_token

    cfg = get_config()
    if not cfg.jwt_secret_key:
        click.echo("❌ JWT_SECRET_KEY not set in .env", err=True)
        sys.exit(1)
    click.echo(create_access_token(uid, email, cfg.jwt_secret_key, expires_hours=hours))


# ============================================================================
# ENTRY POINT
# ============================================================================


if __name__ == "__main__":
    cli(obj={})

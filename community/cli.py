"""
Flask CLI commands for moderation maintenance.

Usage:
    flask init-moderation-rules                          # Seed default rules (skips if any exist)
    flask cleanup-rate-limits --hours 24                 # Drop old rate limit windows
    flask reset-rate-limit user:<uuid> --action login    # Clear counters / blocks
"""

from __future__ import annotations
from datetime import timedelta

import click
from flask.cli import with_appcontext

from community.utils.errors import ModerationStoreError, RateLimitStoreError


@click.command("init-moderation-rules")
@with_appcontext
def init_moderation_rules_command() -> None:
    """Install the default spam, hate speech and violence rules."""
    from community.extensions import get_moderation_store
    from community.services.moderation import default_rules

    store = get_moderation_store()
    try:
        if store.has_rules():
            click.echo("Moderation rules already initialized.")
            return

        for payload in default_rules():
            rule = store.create_rule(payload)
            click.echo(f"  Created '{rule.name}' ({rule.severity}, {rule.action}, {len(rule.keywords)} keywords)")
    except ModerationStoreError as e:
        click.echo(f"Error initializing moderation rules: {e}")
        raise SystemExit(1)

    click.echo("Default moderation rules initialized.")


@click.command("cleanup-rate-limits")
@click.option("--hours", default=24, show_default=True, type=click.IntRange(min=0),
              help="Delete windows that ended more than this many hours ago.")
@with_appcontext
def cleanup_rate_limits_command(hours: int) -> None:
    """Delete expired rate limit windows (run periodically)."""
    from community.extensions import get_rate_limiter

    try:
        removed = get_rate_limiter().cleanup(timedelta(hours=hours))
    except RateLimitStoreError as e:
        click.echo(f"Error cleaning up rate limits: {e}")
        raise SystemExit(1)

    click.echo(f"Removed {removed} rate limit entries.")


@click.command("reset-rate-limit")
@click.argument("identifier")
@click.option("--action", default=None, help="Only reset this action (e.g. login, admin_action).")
@with_appcontext
def reset_rate_limit_command(identifier: str, action: str | None) -> None:
    """Reset rate limits for IDENTIFIER (user:<id> or ip:<address>)."""
    from community.extensions import get_rate_limiter

    limiter = get_rate_limiter()
    if action and action not in limiter.configs:
        raise click.BadParameter(f"unknown action '{action}'", param_hint="--action")

    try:
        removed = limiter.reset(identifier, action)
    except RateLimitStoreError as e:
        click.echo(f"Error resetting rate limits: {e}")
        raise SystemExit(1)

    click.echo(f"Reset {removed} rate limit entries for {identifier}{f' on {action}' if action else ''}.")

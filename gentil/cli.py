"""Custom Flask CLI commands."""

from __future__ import annotations

from typing import Optional

import click
from flask import Flask, current_app

from .models import db
from .models.leaderboard import LEADERBOARD_CATEGORIES, LEADERBOARD_PERIODS
from .models.points import PointAccount
from .services.achievement_service import seed_achievements
from .services.badge_service import seed_badges
from .services.errors import GamificationError
from .services.leaderboard_service import generate_all_snapshots
from .services.points_service import PERIODIC_RESETS, reconcile_account, reset_periodic_points


def register_cli_commands(app: Flask) -> None:
    """Register application specific CLI commands."""

    @app.cli.command("seed-gamification")
    def seed_gamification() -> None:
        """Create or refresh the badge and achievement catalogs."""

        try:
            badges = seed_badges()
            achievements = seed_achievements()
        except GamificationError as exc:
            raise click.ClickException(exc.message) from exc
        click.echo(f"Seeded catalogs: {badges} new badges, {achievements} new achievements")

    @app.cli.command("reset-points")
    @click.argument("period", type=click.Choice(sorted(PERIODIC_RESETS)))
    def reset_points(period: str) -> None:
        """Zero the weekly or monthly rolling totals."""

        try:
            updated = reset_periodic_points(period)
        except GamificationError as exc:
            current_app.logger.exception("[CRON] %s reset failed", period)
            raise click.ClickException(exc.message) from exc
        click.echo(f"{period.capitalize()} points reset for {updated} accounts")

    @app.cli.command("generate-leaderboards")
    @click.option("--period", type=click.Choice(LEADERBOARD_PERIODS), default=None)
    @click.option("--category", type=click.Choice(LEADERBOARD_CATEGORIES), default=None)
    def generate_leaderboards(period: Optional[str], category: Optional[str]) -> None:
        """Regenerate leaderboard snapshots (all of them by default)."""

        try:
            generated = generate_all_snapshots(
                (period,) if period else None,
                (category,) if category else None,
            )
        except GamificationError as exc:
            raise click.ClickException(exc.message) from exc
        for key, count in generated.items():
            click.echo(f"{key}: {count} entries")

    @app.cli.command("reconcile-points")
    @click.option("--user-id", type=int, default=None, help="Only reconcile this user.")
    def reconcile_points(user_id: Optional[int]) -> None:
        """Rebuild account totals from the transaction ledger."""

        if user_id is not None:
            user_ids = [user_id]
        else:
            user_ids = [row[0] for row in db.session.query(PointAccount.user_id).order_by(PointAccount.user_id)]

        repaired = 0
        for current_id in user_ids:
            try:
                result = reconcile_account(current_id)
            except GamificationError as exc:
                raise click.ClickException(exc.message) from exc
            if result.repaired:
                repaired += 1
                click.echo(f"user {current_id}: repaired {result.drift}")
        click.echo(f"Reconciled {len(user_ids)} accounts, {repaired} repaired")

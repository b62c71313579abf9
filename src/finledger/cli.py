"""Flask CLI commands for Finledger."""

from __future__ import annotations

import click


def init_app(app) -> None:
    """Register CLI commands on the Flask app."""

    @app.cli.command("finledger-expire-plans")
    def finledger_expire_plans() -> None:
        """Downgrade paid users whose renewal plus grace period has passed."""

        # Import here to avoid circular imports at module import time
        from .extensions import get_services

        expired = get_services(app).plans.expire_lapsed_plans()
        if expired:
            click.echo(f"Expired {len(expired)} plan(s): {', '.join(str(uid) for uid in expired)}")
        else:
            click.echo("No lapsed plans.")

    @app.cli.command("finledger-reconcile")
    @click.option("--repair", is_flag=True, default=False, help="Delete orphans and rebuild usage counters")
    def finledger_reconcile(repair: bool) -> None:
        """Report ledger rows, usage counters and debt balances that disagree."""

        from .extensions import get_services
        from .services.reconciliation import reconcile

        report = reconcile(get_services(app).session_factory, repair=repair)
        if report.clean:
            click.echo("Ledger is consistent.")
            return

        for txn_id in report.orphan_transactions:
            action = "deleted" if repair else "found"
            click.echo(f"Orphan transaction {txn_id} {action}")
        for mismatch in report.usage_mismatches:
            click.echo(
                f"Usage user={mismatch.user_id} period={mismatch.period} "
                f"stored={mismatch.stored} actual={mismatch.actual}"
                + (" (reset)" if repair else "")
            )
        for drift in report.debt_drift:
            click.echo(f"Debt {drift.debt_id} balance drift {drift.drift:+.2f}")

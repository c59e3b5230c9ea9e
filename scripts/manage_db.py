#!/usr/bin/env python3
"""
Database management script for the Scoopify backend.
"""

import asyncio
import sys
from datetime import date

import typer
from rich.console import Console
from rich.table import Table

from alembic.config import Config
from alembic import command
from sqlalchemy import func, select

from scoopify.core.database import init_database, close_database, get_async_session, DatabaseManager
from scoopify.core.logging import setup_logging
from scoopify.models import (
    Customer, Employee, PaymentMethod, PayoutRequest, ServiceInstance, ServicePlan,
    Subscription, SubscriptionStatus
)
from scoopify.utils.dates import Weekday

console = Console()
app = typer.Typer(help="Database management commands")


def with_database(job):
    """Run an async job between init_database() and close_database()."""
    async def _wrapped():
        setup_logging()
        await init_database()
        try:
            return await job()
        finally:
            await close_database()

    return asyncio.run(_wrapped())


def alembic_config() -> Config:
    return Config("alembic.ini")


@app.command()
def init():
    """Create all tables directly from the models."""
    with_database(DatabaseManager.create_tables)
    console.print("✅ Tables created from models")


@app.command()
def migrate(message: str = typer.Option(..., prompt="Migration message")):
    """Autogenerate a new migration."""
    command.revision(alembic_config(), message=message, autogenerate=True)
    console.print(f"✅ Migration created: {message}")


@app.command()
def upgrade(revision: str = "head"):
    """Apply migrations up to a revision."""
    command.upgrade(alembic_config(), revision)
    console.print(f"✅ Upgraded to {revision}")


@app.command()
def downgrade(revision: str):
    """Roll migrations back to a revision."""
    command.downgrade(alembic_config(), revision)
    console.print(f"⬇️ Downgraded to {revision}")


@app.command()
def reset():
    """Drop all tables."""
    if not typer.confirm("Drop every Scoopify table?"):
        console.print("❌ Operation cancelled")
        return

    with_database(DatabaseManager.drop_tables)
    console.print("🗑️ All tables dropped")


@app.command()
def health():
    """Check database health."""
    if with_database(DatabaseManager.health_check):
        console.print("✅ Database is healthy")
    else:
        console.print("❌ Database health check failed")
        sys.exit(1)


@app.command()
def seed(customers: int = typer.Option(3, help="Number of sample customers")):
    """Seed a plan, an employee and weekly subscriptions for local development."""
    console.print("🌱 Seeding sample data...")

    async def _seed():
        async with get_async_session() as db:
            plan = ServicePlan(name="1 Dog Weekly", price_cents=5500)
            db.add(plan)
            db.add(Employee(
                user_id="employee-1",
                name="Sample Employee",
                has_completed_service_area_setup=True
            ))
            await db.flush()

            weekdays = list(Weekday)
            for i in range(customers):
                customer = Customer(
                    user_id=f"customer-{i + 1}",
                    name=f"Sample Customer {i + 1}",
                    gateway_customer_reference=f"cus_sample_{i + 1}"
                )
                db.add(customer)
                await db.flush()
                db.add(Subscription(
                    customer_id=customer.id,
                    plan_id=plan.id,
                    status=SubscriptionStatus.ACTIVE,
                    start_date=date.today(),
                    service_day=weekdays[i % len(weekdays)],
                    payment_method=PaymentMethod.CARD
                ))

    with_database(_seed)
    console.print(f"✅ Seeded 1 plan, 1 employee and {customers} subscriptions")


@app.command()
def status():
    """Show connectivity and row counts."""
    table = Table(title="Scoopify Database")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")

    async def _status():
        is_healthy = await DatabaseManager.health_check()
        table.add_row("Database", "✅ Connected" if is_healthy else "❌ Disconnected")
        if not is_healthy:
            return

        async with get_async_session() as db:
            for model in (Customer, Subscription, Employee, ServiceInstance, PayoutRequest):
                count = await db.scalar(select(func.count()).select_from(model))
                table.add_row(model.__tablename__, str(count))

    with_database(_status)
    console.print(table)


if __name__ == "__main__":
    app()

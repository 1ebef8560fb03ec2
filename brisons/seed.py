import click
from flask import current_app
from flask.cli import with_appcontext

from .agents import create_agent
from .auth import Role, create_user

SAMPLE_AGENTS = [
    {"name": "Rajesh Kumar", "phone": "+91 98765 43210", "email": "rajesh.kumar@brisons.com",
     "vehicle": {"type": "Bike", "number": "MH12AB1234", "model": "Honda Activa"},
     "location": {"lat": 19.0760, "lng": 72.8777, "address": "Bandra West, Mumbai"}, "rating": 4.8},
    {"name": "Amit Singh", "phone": "+91 98765 43211", "email": "amit.singh@brisons.com",
     "vehicle": {"type": "Scooter", "number": "MH12CD5678", "model": "TVS Jupiter"},
     "location": {"lat": 19.0596, "lng": 72.8295, "address": "Juhu, Mumbai"}, "rating": 4.6},
    {"name": "Suresh Patel", "phone": "+91 98765 43212", "email": "suresh.patel@brisons.com",
     "vehicle": {"type": "Bike", "number": "MH12EF9012", "model": "Bajaj Pulsar"},
     "location": {"lat": 19.1136, "lng": 72.8697, "address": "Andheri East, Mumbai"}, "rating": 4.9},
    {"name": "Vikram Sharma", "phone": "+91 98765 43213", "email": "vikram.sharma@brisons.com",
     "vehicle": {"type": "Car", "number": "MH12GH3456", "model": "Maruti Swift"},
     "location": {"lat": 19.0330, "lng": 72.8570, "address": "Dadar, Mumbai"}, "rating": 4.7},
]


def seed_agents(db):
    if db.delivery_agents.count_documents({}) > 0:
        return 0
    for data in SAMPLE_AGENTS:
        create_agent(db, data)
    return len(SAMPLE_AGENTS)


@click.command("seed-agents")
@with_appcontext
def seed_agents_command():
    """Insert sample delivery agents around the default pharmacy."""
    count = seed_agents(current_app.db)
    if count:
        click.echo(f"Seeded {count} delivery agents")
    else:
        click.echo("Delivery agents already exist, nothing to do")


@click.command("create-user")
@click.option("--name", required=True)
@click.option("--email", required=True)
@click.option("--password", required=True, prompt=True, hide_input=True)
@click.option("--role", type=click.Choice([r.value for r in Role]), default=Role.PHARMACIST.value)
@with_appcontext
def create_user_command(name, email, password, role):
    """Create a customer, pharmacist or admin account."""
    user = create_user(current_app.db, name, email, password, role=role)
    click.echo(f"Created {role} {user['email']} ({user['_id']})")


def init_app(app):
    app.cli.add_command(seed_agents_command)
    app.cli.add_command(create_user_command)

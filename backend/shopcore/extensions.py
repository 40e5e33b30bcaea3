# Overview: Flask extension instances for database, migrations and external capabilities.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .gateways import GatewayRegistry

db = SQLAlchemy()
migrate = Migrate()

# Payment, shipping and discount adapters; resolved from app config in init_app
gateways = GatewayRegistry()

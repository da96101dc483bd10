"""
Flask extensions shared across the loyalcard application.
"""
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Ledger database
db = SQLAlchemy()

# Alembic migrations
migrate = Migrate()

# Cross-origin access for the scanner and customer web clients
cors = CORS()

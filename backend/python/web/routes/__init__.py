"""Route blueprints for Flask app."""
from .api import api_bp
from .sync import sync_bp
from .reports import reports_bp
from .jobs import jobs_bp
